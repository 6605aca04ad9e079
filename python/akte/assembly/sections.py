"""
Pruning of [[IF:Field]] ... [[ENDIF:Field]] spans.

An ENDIF closes the most recent open IF with the same field name, wherever it
sits on the stack; IFs opened after it stay open.
"""

import re
from typing import List, Mapping, NamedTuple, Sequence

import structlog
from docx.document import Document as DocumentObject
from docx.text.paragraph import Paragraph

from akte.context import CaseInsensitiveDict
from akte.utils.docx import (
    get_block_text,
    is_attached,
    is_blank,
    iter_document_parts,
    iter_paragraphs,
    remove_block,
    sub_block_text,
)

logger = structlog.get_logger(__name__)

CONDITIONAL_TAG = re.compile(r"\[\[(IF|ENDIF):(\w+)\]\]", re.IGNORECASE)


class ConditionalBlock(NamedTuple):
    field: str
    start_index: int
    end_index: int


def find_conditional_blocks(texts: Sequence[str]) -> List[ConditionalBlock]:
    """
    Pairs IF/ENDIF tags over a list of block texts.
    Tags inside one block are handled in text order.
    Unclosed IFs are logged and not returned.
    """
    stack = []  # (block_index, field)
    found: List[ConditionalBlock] = []

    for index, text in enumerate(texts):
        for match in CONDITIONAL_TAG.finditer(text):
            kind, field = match.group(1).upper(), match.group(2)
            if kind == "IF":
                stack.append((index, field))
                continue

            for pos in range(len(stack) - 1, -1, -1):
                open_index, open_field = stack[pos]
                if open_field.lower() == field.lower():
                    del stack[pos]
                    found.append(ConditionalBlock(open_field, open_index, index))
                    break
            else:
                logger.debug("ENDIF without matching IF", field=field, block_index=index)

    for open_index, open_field in stack:
        logger.warning("UnclosedConditionalBlock", field=open_field, block_index=open_index)

    return found


def _tag_pattern(field: str) -> re.Pattern:
    return re.compile(rf"\[\[(?:IF|ENDIF):{re.escape(field)}\]\]", re.IGNORECASE)


class ConditionalSectionPruner:
    def __init__(self, replacements: Mapping[str, str]):
        if isinstance(replacements, CaseInsensitiveDict):
            self.replacements = replacements
        else:
            self.replacements = CaseInsensitiveDict(replacements)
        self.kept = 0
        self.removed = 0

    def is_truthy(self, field: str) -> bool:
        value = self.replacements.get(field)
        return value is not None and bool(str(value).strip())

    def process_document(self, doc: DocumentObject) -> int:
        """
        Prunes each region part (body, each header, each footer) separately.
        Returns the number of resolved conditional blocks.
        """
        if doc.element.body is None:
            logger.warning("MissingDocumentRoot: skipping conditional sections")
            return 0

        resolved = 0
        for region, container in iter_document_parts(doc):
            resolved += self.process_blocks(list(iter_paragraphs(container)))
        logger.info("Conditional sections resolved", kept=self.kept, removed=self.removed)
        return resolved

    def process_blocks(self, blocks: Sequence[Paragraph]) -> int:
        conditional_blocks = find_conditional_blocks([get_block_text(p) for p in blocks])

        for cb in sorted(conditional_blocks, key=lambda c: c.start_index, reverse=True):
            if self.is_truthy(cb.field):
                self._strip_tags(blocks, cb)
                self.kept += 1
            else:
                for paragraph in blocks[cb.start_index : cb.end_index + 1]:
                    remove_block(paragraph)
                self.removed += 1
            logger.debug(
                "Conditional block",
                field=cb.field,
                start=cb.start_index,
                end=cb.end_index,
                keep=self.is_truthy(cb.field),
            )

        return len(conditional_blocks)

    def _strip_tags(self, blocks: Sequence[Paragraph], cb: ConditionalBlock):
        pattern = _tag_pattern(cb.field)
        for index in sorted({cb.start_index, cb.end_index}):
            paragraph = blocks[index]
            if not is_attached(paragraph):
                continue
            if sub_block_text(paragraph, pattern, "") and is_blank(paragraph):
                remove_block(paragraph)
