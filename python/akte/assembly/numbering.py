"""
Legal article numbering.

One native multi-level list definition renders level 0 as "Artikel N" and
level 1 as "N.M". Markers in the text attach blocks to it, insert plain-text
numbers, or restart the sequence with a fresh numbering instance.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Optional

import structlog
from docx.document import Document as DocumentObject
from docx.opc.constants import CONTENT_TYPE as CT
from docx.opc.constants import RELATIONSHIP_TYPE as RT
from docx.opc.packuri import PackURI
from docx.oxml import parse_xml
from docx.oxml.ns import nsdecls, qn
from docx.parts.numbering import NumberingPart

from akte.utils.docx import (
    get_block_text,
    is_blank,
    remove_block,
    set_numbering,
    snapshot_blocks,
    sub_block_text,
)

logger = structlog.get_logger(__name__)

LEGAL_NUMBERING_ID = 9001
RESTART_ID_START = 9100
LEGAL_NSID = "9001ABCD"

NUMBERING_MARKER = re.compile(r"\[\[(ARTIKEL_RESET|SUBARTIKEL_NR|ARTIKEL_NR|SUBARTIKEL|ARTIKEL)\]\]", re.IGNORECASE)
_NATIVE_MARKER = re.compile(r"\[\[(SUBARTIKEL|ARTIKEL)\]\]", re.IGNORECASE)


class NumberingAllocator:
    """
    Hands out numbering instance ids for one processing session.
    Ids already used in the document are skipped.
    """

    def __init__(self, start: int = RESTART_ID_START):
        self._next = start
        self._taken = set()

    def reserve(self, ids: Iterable):
        self._taken.update(int(i) for i in ids)

    def allocate(self) -> int:
        while self._next in self._taken:
            self._next += 1
        value = self._next
        self._next += 1
        self._taken.add(value)
        return value


@dataclass
class NumberingState:
    active_sequence_id: int
    article_counter: int = 1
    sub_article_counter: int = 1


def get_numbering_element(doc: DocumentObject):
    """Returns the w:numbering root, adding a numbering part when the template has none."""
    try:
        return doc.part.numbering_part.element
    except NotImplementedError:
        element = parse_xml(f"<w:numbering {nsdecls('w')}/>")
        part = NumberingPart(PackURI("/word/numbering.xml"), CT.WML_NUMBERING, element, doc.part.package)
        doc.part.relate_to(part, RT.NUMBERING)
        logger.debug("Added numbering part to document")
        return element


def _legal_abstract_num_xml(base_id: int) -> str:
    levels = [
        f"""
        <w:lvl w:ilvl="0">
            <w:start w:val="1"/>
            <w:numFmt w:val="decimal"/>
            <w:lvlText w:val="Artikel %1"/>
            <w:lvlJc w:val="left"/>
            <w:pPr><w:ind w:left="0" w:hanging="0"/></w:pPr>
            <w:rPr><w:b/></w:rPr>
        </w:lvl>""",
        """
        <w:lvl w:ilvl="1">
            <w:start w:val="1"/>
            <w:numFmt w:val="decimal"/>
            <w:lvlText w:val="%1.%2"/>
            <w:lvlJc w:val="left"/>
            <w:pPr><w:ind w:left="0" w:hanging="0"/></w:pPr>
        </w:lvl>""",
    ]
    for i in range(2, 9):
        levels.append(
            f"""
        <w:lvl w:ilvl="{i}">
            <w:start w:val="1"/>
            <w:numFmt w:val="decimal"/>
            <w:lvlText w:val="%{i + 1}."/>
            <w:lvlJc w:val="left"/>
        </w:lvl>"""
        )
    return (
        f'<w:abstractNum {nsdecls("w")} w:abstractNumId="{base_id}">'
        f'<w:nsid w:val="{LEGAL_NSID}"/>'
        f'<w:multiLevelType w:val="multilevel"/>'
        f'{"".join(levels)}'
        f"</w:abstractNum>"
    )


def _num_xml(num_id: int, abstract_id: int, restart: bool = False) -> str:
    overrides = ""
    if restart:
        overrides = "".join(
            f'<w:lvlOverride w:ilvl="{lvl}"><w:startOverride w:val="1"/></w:lvlOverride>' for lvl in (0, 1)
        )
    return (
        f'<w:num {nsdecls("w")} w:numId="{num_id}">'
        f'<w:abstractNumId w:val="{abstract_id}"/>'
        f"{overrides}"
        f"</w:num>"
    )


def _insert_num(numbering, num):
    existing = numbering.findall(qn("w:num"))
    if existing:
        existing[-1].addnext(num)
        return
    cleanup = numbering.find(qn("w:numIdMacAtCleanup"))
    if cleanup is not None:
        cleanup.addprevious(num)
    else:
        numbering.append(num)


def _insert_abstract_num(numbering, abstract_num):
    # Schema order: every w:abstractNum precedes the first w:num.
    first_num = numbering.find(qn("w:num"))
    if first_num is not None:
        first_num.addprevious(abstract_num)
        return
    cleanup = numbering.find(qn("w:numIdMacAtCleanup"))
    if cleanup is not None:
        cleanup.addprevious(abstract_num)
    else:
        numbering.append(abstract_num)


def ensure_legal_numbering(doc: DocumentObject, base_id: int = LEGAL_NUMBERING_ID) -> bool:
    """
    Adds the legal abstract numbering and its default instance, each only when missing.
    Returns True when anything was created by this call.
    """
    numbering = get_numbering_element(doc)
    created = False

    if not numbering.xpath(f'./w:abstractNum[@w:abstractNumId="{base_id}"]'):
        _insert_abstract_num(numbering, parse_xml(_legal_abstract_num_xml(base_id)))
        logger.info("Legal numbering definition created", abstract_num_id=base_id)
        created = True

    if not numbering.xpath(f'./w:num[@w:numId="{base_id}"]'):
        _insert_num(numbering, parse_xml(_num_xml(base_id, base_id)))
        logger.debug("Legal numbering instance created", num_id=base_id)
        created = True

    return created


def create_restarted_instance(
    doc: DocumentObject, allocator: NumberingAllocator, base_id: int = LEGAL_NUMBERING_ID
) -> int:
    """New w:num bound to the legal definition with levels 0 and 1 restarting at 1."""
    numbering = get_numbering_element(doc)
    allocator.reserve(numbering.xpath("./w:num/@w:numId"))

    num_id = allocator.allocate()
    _insert_num(numbering, parse_xml(_num_xml(num_id, base_id, restart=True)))
    logger.debug("Restarted numbering instance", num_id=num_id)
    return num_id


class LegalNumberingEngine:
    """
    Applies [[ARTIKEL]], [[SUBARTIKEL]], [[ARTIKEL_NR]], [[SUBARTIKEL_NR]] and
    [[ARTIKEL_RESET]] markers left to right over all blocks.
    """

    def __init__(self, allocator: Optional[NumberingAllocator] = None, base_id: int = LEGAL_NUMBERING_ID):
        self.allocator = allocator or NumberingAllocator()
        self.base_id = base_id
        self.numbered_blocks = 0
        self.restarts = 0

    def process_document(self, doc: DocumentObject) -> NumberingState:
        state = NumberingState(active_sequence_id=self.base_id)
        if doc.element.body is None:
            logger.warning("MissingDocumentRoot: skipping numbering markers")
            return state

        blocks = [b for b in snapshot_blocks(doc) if NUMBERING_MARKER.search(get_block_text(b.paragraph))]
        if not blocks:
            return state

        native = any(_NATIVE_MARKER.search(get_block_text(b.paragraph)) for b in blocks)
        if native:
            ensure_legal_numbering(doc, self.base_id)

        for block in blocks:
            self._process_block(doc, block.paragraph, state, native)

        logger.info(
            "Numbering markers processed",
            blocks=len(blocks),
            numbered=self.numbered_blocks,
            restarts=self.restarts,
        )
        return state

    def _process_block(self, doc, paragraph, state: NumberingState, native: bool):
        level = None
        had_reset = False

        def _apply(match) -> str:
            nonlocal level, had_reset
            marker = match.group(1).upper()

            if marker == "ARTIKEL":
                level = (0, state.active_sequence_id)
                state.article_counter += 1
                state.sub_article_counter = 1
                return ""
            if marker == "SUBARTIKEL":
                level = (1, state.active_sequence_id)
                state.sub_article_counter += 1
                return ""
            if marker == "ARTIKEL_NR":
                text = str(state.article_counter)
                state.article_counter += 1
                state.sub_article_counter = 1
                return text
            if marker == "SUBARTIKEL_NR":
                text = f"{state.article_counter - 1}.{state.sub_article_counter}"
                state.sub_article_counter += 1
                return text

            # ARTIKEL_RESET
            had_reset = True
            if native:
                state.active_sequence_id = create_restarted_instance(doc, self.allocator, self.base_id)
            state.article_counter = 1
            state.sub_article_counter = 1
            self.restarts += 1
            return ""

        sub_block_text(paragraph, NUMBERING_MARKER, _apply)

        if level is not None:
            ilvl, num_id = level
            set_numbering(paragraph, num_id, ilvl)
            self.numbered_blocks += 1

        if had_reset and level is None and is_blank(paragraph):
            remove_block(paragraph)
