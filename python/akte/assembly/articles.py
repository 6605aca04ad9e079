"""
Marker-based removal of articles and blocks, followed by contiguous renumbering
of the surviving articles.

A block whose trimmed text is exactly the article marker ('^') removes the
article it sits in. A block whose trimmed text is exactly the block marker
('#') removes itself.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

import structlog
from docx.document import Document as DocumentObject

from akte.utils.docx import (
    BlockRef,
    get_block_text,
    get_list_level,
    remove_block,
    replace_text_range,
    snapshot_blocks,
)

logger = structlog.get_logger(__name__)

MAIN_ARTICLE_PATTERN = re.compile(r"^(\d+)\.")
SUB_ARTICLE_PATTERN = re.compile(r"^\s+(\d+)\.\d")


@dataclass
class ArticleRemovalState:
    """Transient bookkeeping of one removal pass. Blocks are keyed by their w:p element."""

    blocks_to_remove: Set = field(default_factory=set)
    articles_to_remove: Set[int] = field(default_factory=set)
    removed_blocks: int = 0
    renumbering: Dict[int, int] = field(default_factory=dict)


def main_article_number(block: BlockRef, text: Optional[str] = None) -> Optional[int]:
    """Old article number of a main article block: list level 0 and text starting with 'N.'."""
    if get_list_level(block.paragraph) != 0:
        return None
    match = MAIN_ARTICLE_PATTERN.match(get_block_text(block.paragraph) if text is None else text)
    return int(match.group(1)) if match else None


def _region_key(block: BlockRef):
    return block.region, block.region_index


class ArticleRemover:
    def __init__(self, remove_article_marker: str = "^", remove_block_marker: str = "#"):
        if remove_article_marker == remove_block_marker:
            raise ValueError("Article and block markers must differ")
        self.remove_article_marker = remove_article_marker
        self.remove_block_marker = remove_block_marker

    def process_document(self, doc: DocumentObject) -> ArticleRemovalState:
        state = ArticleRemovalState()
        if doc.element.body is None:
            logger.warning("MissingDocumentRoot: skipping article removal")
            return state

        blocks = snapshot_blocks(doc)
        texts = [get_block_text(b.paragraph) for b in blocks]
        numbers = [main_article_number(b, t) for b, t in zip(blocks, texts)]

        self._discover(blocks, texts, numbers, state)
        if not state.blocks_to_remove and not state.articles_to_remove:
            return state

        removed = self._remove(blocks, numbers, state)
        survivors = [(b, n) for b, n in zip(blocks, numbers) if b.paragraph._p not in removed]
        state.renumbering = self._build_renumbering(survivors)
        self._rewrite([b for b, _ in survivors], state.renumbering)

        logger.info(
            "Article removal complete",
            removed_articles=sorted(state.articles_to_remove),
            removed_blocks=state.removed_blocks,
            renumbered=len([k for k, v in state.renumbering.items() if k != v]),
        )
        return state

    def _discover(self, blocks: Sequence[BlockRef], texts: List[str], numbers: List[Optional[int]], state):
        for index, (block, text) in enumerate(zip(blocks, texts)):
            marker = text.strip()
            if marker == self.remove_block_marker:
                state.blocks_to_remove.add(block.paragraph._p)
            elif marker == self.remove_article_marker:
                # The marker itself never survives.
                state.blocks_to_remove.add(block.paragraph._p)
                article = self._enclosing_article(blocks, numbers, index)
                if article is None:
                    logger.debug("Article marker without preceding article", block_index=index)
                else:
                    state.articles_to_remove.add(article)

    @staticmethod
    def _enclosing_article(blocks: Sequence[BlockRef], numbers: List[Optional[int]], index: int) -> Optional[int]:
        region = _region_key(blocks[index])
        for back in range(index - 1, -1, -1):
            if _region_key(blocks[back]) != region:
                return None
            if numbers[back] is not None:
                return numbers[back]
        return None

    @staticmethod
    def _remove(blocks: Sequence[BlockRef], numbers: List[Optional[int]], state: ArticleRemovalState) -> Set:
        removed = set()
        current_article = 0
        current_region = None
        for block, number in zip(blocks, numbers):
            if _region_key(block) != current_region:
                current_region = _region_key(block)
                current_article = 0
            if number is not None:
                current_article = number

            in_removed_article = current_article > 0 and current_article in state.articles_to_remove
            if block.paragraph._p in state.blocks_to_remove or in_removed_article:
                if remove_block(block.paragraph):
                    state.removed_blocks += 1
                removed.add(block.paragraph._p)
        return removed

    @staticmethod
    def _build_renumbering(survivors) -> Dict[int, int]:
        mapping: Dict[int, int] = {}
        for _, number in survivors:
            if number is None:
                continue
            if number not in mapping:
                mapping[number] = len(mapping) + 1
        return mapping

    @staticmethod
    def _rewrite(blocks: Sequence[BlockRef], mapping: Dict[int, int]):
        for block in blocks:
            paragraph = block.paragraph
            text = get_block_text(paragraph)
            match = MAIN_ARTICLE_PATTERN.match(text) or SUB_ARTICLE_PATTERN.match(text)
            if not match:
                continue
            old = int(match.group(1))
            new = mapping.get(old)
            if new is None or new == old:
                continue
            replace_text_range(paragraph, match.start(1), match.end(1), str(new))
            logger.debug("Renumbered", old=old, new=new)
