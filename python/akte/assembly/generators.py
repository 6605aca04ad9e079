"""
Dispatch of content generators: plug-ins that replace a placeholder block with
generated paragraphs or tables.
"""

from copy import deepcopy
from typing import Any, Iterable, List, NamedTuple, Optional, Protocol, Sequence, runtime_checkable

import structlog
from docx.document import Document as DocumentObject
from docx.oxml.ns import qn
from docx.table import Table
from docx.text.paragraph import Paragraph

from akte.context import PlaceholderContext
from akte.utils.docx import get_block_text, insert_after, remove_block, snapshot_blocks

logger = structlog.get_logger(__name__)


@runtime_checkable
class ContentGenerator(Protocol):
    placeholder_tag: str

    def generate(self, tag: str, context: PlaceholderContext) -> Sequence[Any]:
        """Returns w:p / w:tbl elements or python-docx Paragraph / Table objects."""
        ...


def _to_element(node):
    if isinstance(node, Paragraph):
        return node._p
    if isinstance(node, Table):
        return node._tbl
    if getattr(node, "tag", None) in (qn("w:p"), qn("w:tbl")):
        return node
    raise TypeError(f"Generator returned unsupported node: {type(node)}")


def _inherit_paragraph_properties(element, template_pPr):
    """
    Paragraphs without properties take a copy of the placeholder's pPr.
    Paragraphs with their own pPr only take its indentation, if they lack one.
    """
    if template_pPr is None or element.tag != qn("w:p"):
        return

    pPr = element.find(qn("w:pPr"))
    if pPr is None:
        element.insert(0, deepcopy(template_pPr))
        return

    ind = template_pPr.find(qn("w:ind"))
    if ind is not None and pPr.find(qn("w:ind")) is None:
        # CT_PPr knows the schema position of w:ind; raw lxml elements do not
        if hasattr(pPr, "_insert_ind"):
            pPr._insert_ind(deepcopy(ind))
        else:
            pPr.append(deepcopy(ind))


class DispatchResult(NamedTuple):
    replaced: int
    failures: List[str]


class GeneratorRegistry:
    """
    Generators in registration order. The first one whose tag occurs in a block wins.
    The registry holds no per-run state and may be shared between runs.
    """

    def __init__(self, generators: Optional[Iterable[ContentGenerator]] = None):
        self._generators: List[ContentGenerator] = []
        for generator in generators or []:
            self.register(generator)

    def register(self, generator: ContentGenerator):
        if not getattr(generator, "placeholder_tag", None):
            raise ValueError(f"Generator {generator!r} has no placeholder_tag")
        self._generators.append(generator)

    def __iter__(self):
        return iter(self._generators)

    def __len__(self) -> int:
        return len(self._generators)

    def find(self, text: str) -> Optional[ContentGenerator]:
        for generator in self._generators:
            if generator.placeholder_tag in text:
                return generator
        return None

    def dispatch(self, doc: DocumentObject, context: PlaceholderContext) -> DispatchResult:
        """
        Replaces each block that contains a registered tag with generated content.
        A failing generator leaves its block untouched.
        Returns the number of replaced blocks and the tags that failed in this call.
        """
        failures: List[str] = []
        if not self._generators:
            return DispatchResult(0, failures)

        replaced = 0
        for block in snapshot_blocks(doc):
            paragraph = block.paragraph
            generator = self.find(get_block_text(paragraph))
            if generator is None:
                continue

            tag = generator.placeholder_tag
            try:
                elements = [_to_element(node) for node in generator.generate(tag, context) or []]
            except Exception:
                logger.exception("ContentGeneratorFailure", tag=tag, generator=type(generator).__name__)
                failures.append(tag)
                continue

            template_pPr = paragraph._p.find(qn("w:pPr"))
            for element in elements:
                _inherit_paragraph_properties(element, template_pPr)

            insert_after(paragraph._p, elements)
            remove_block(paragraph)
            replaced += 1
            logger.debug("Generated content", tag=tag, elements=len(elements))

        logger.info(f"Content generators replaced {replaced} blocks", failures=len(failures))
        return DispatchResult(replaced, failures)
