import re
from typing import Iterable, Mapping, Optional, Pattern, Tuple

import structlog
from docx.document import Document as DocumentObject
from docx.text.paragraph import Paragraph

from akte.context import CaseInsensitiveDict
from akte.utils.docx import get_block_text, set_block_text, snapshot_blocks

logger = structlog.get_logger(__name__)


def build_placeholder_pattern(keys: Iterable[str]) -> Optional[Pattern]:
    """
    One case-insensitive pattern for [[Key]], {Key}, <<Key>> and [Key] over all keys.
    Longer keys come first so 'Naam' never shadows 'NaamPartij1'.
    """
    unique = sorted({k for k in keys if k}, key=lambda k: (-len(k), k.lower()))
    if not unique:
        return None
    names = "|".join(re.escape(k) for k in unique)
    return re.compile(
        rf"\[\[(?P<double>{names})\]\]|\{{(?P<brace>{names})\}}|<<(?P<angle>{names})>>|\[(?P<single>{names})\]",
        re.IGNORECASE,
    )


class PlaceholderResolver:
    """
    Substitutes scalar placeholders in blocks.
    Unknown tokens are left verbatim.
    """

    def __init__(self, replacements: Mapping[str, str]):
        if isinstance(replacements, CaseInsensitiveDict):
            self.replacements = replacements
        else:
            self.replacements = CaseInsensitiveDict(replacements)
        self.pattern = build_placeholder_pattern(self.replacements.keys())

    def _lookup(self, match: re.Match) -> str:
        key = match.group("double") or match.group("brace") or match.group("angle") or match.group("single")
        return self.replacements[key]

    def resolve_text(self, text: str) -> Tuple[str, int]:
        """
        Single left-to-right scan. Substituted values are not rescanned.
        Returns (new_text, substitutions).
        """
        if self.pattern is None or not text:
            return text, 0
        return self.pattern.subn(self._lookup, text)

    def process_block(self, paragraph: Paragraph) -> bool:
        text = get_block_text(paragraph)
        new_text, count = self.resolve_text(text)
        if count == 0:
            return False
        set_block_text(paragraph, new_text)
        return True

    def process_document(self, doc: DocumentObject, keys: Optional[Iterable[str]] = None) -> int:
        """
        Substitutes placeholders in every block of every region.
        With keys, only those keys are substituted.
        Returns the number of changed blocks.
        """
        resolver = self
        if keys is not None:
            subset = {k: self.replacements[k] for k in keys if k in self.replacements}
            resolver = PlaceholderResolver(subset)

        if resolver.pattern is None:
            return 0

        changed = 0
        for block in snapshot_blocks(doc):
            if resolver.process_block(block.paragraph):
                changed += 1

        logger.info(f"Substituted placeholders in {changed} blocks", keys=len(resolver.replacements))
        return changed
