"""
Low-level utilities for reading and mutating the DOCX block tree.

A Block is a python-docx Paragraph. Its stable handle is the underlying w:p
element, which survives sibling insertions and removals.
"""

from copy import deepcopy
from typing import Any, Callable, Iterator, List, NamedTuple, Optional, Pattern, Tuple, Union

import structlog
from docx.document import Document as DocumentObject
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.table import Table, _Cell
from docx.text.paragraph import Paragraph
from lxml import etree

logger = structlog.get_logger(__name__)


# --- Types ---
class BlockRef(NamedTuple):
    paragraph: Paragraph
    region: str  # 'body', 'header', 'footer'
    region_index: int


class TextSegment(NamedTuple):
    element: Any  # w:t, w:tab, w:br or w:cr
    run: Any
    start: int
    text: str


BlockItem = Union[Paragraph, Table]

# Elements whose runs are part of the visible paragraph text.
_RUN_CONTAINERS = {
    qn("w:ins"),
    qn("w:hyperlink"),
    qn("w:smartTag"),
    qn("w:fldSimple"),
    qn("w:customXml"),
    qn("w:moveTo"),
}

_TEXT_TAGS = {qn("w:t"), qn("w:tab"), qn("w:br"), qn("w:cr")}


def create_element(name: str):
    return OxmlElement(name)


def create_attribute(element, name: str, value: str):
    element.set(qn(name), value)


def set_text_content(element, text: str):
    element.text = text
    if text.strip() != text:
        create_attribute(element, "xml:space", "preserve")


# --- Traversal ---
def iter_document_parts(doc: DocumentObject) -> Iterator[Tuple[str, Any]]:
    """
    Yields (region, container) pairs in processing order:
    1. Main Body
    2. Unique Headers (Primary, First, Even)
    3. Unique Footers (Primary, First, Even)

    Parts marked 'Link to Previous' are skipped so shared content is visited once.
    """
    seen = set()

    def _iter_section_parts(section, part_type_attr):
        candidates = [getattr(section, part_type_attr)]
        if section.different_first_page_header_footer:
            candidates.append(getattr(section, f"first_page_{part_type_attr}"))
        if doc.settings.odd_and_even_pages_header_footer:
            candidates.append(getattr(section, f"even_page_{part_type_attr}"))

        for part in candidates:
            if part.is_linked_to_previous:
                continue
            partname = str(part.part.partname)
            if partname in seen:
                continue
            seen.add(partname)
            yield part

    if doc.element.body is not None:
        yield "body", doc

    for section in doc.sections:
        for header in _iter_section_parts(section, "header"):
            yield "header", header

    for section in doc.sections:
        for footer in _iter_section_parts(section, "footer"):
            yield "footer", footer


def get_container_element(parent):
    if isinstance(parent, DocumentObject):
        return parent.element.body
    if isinstance(parent, _Cell):
        return parent._tc
    if hasattr(parent, "_element"):
        return parent._element
    raise ValueError(f"Unsupported parent type for iteration: {type(parent)}")


def iter_block_items(parent) -> Iterator[BlockItem]:
    """
    Yields Paragraph or Table objects in the order they appear in the XML.
    Block-level content controls are transparent. Recursion into tables is
    left to the caller.
    """

    def _walk(element):
        for child in element.iterchildren():
            if child.tag == qn("w:p"):
                yield Paragraph(child, parent)
            elif child.tag == qn("w:tbl"):
                yield Table(child, parent)
            elif child.tag == qn("w:sdt"):
                content = child.find(qn("w:sdtContent"))
                if content is not None:
                    yield from _walk(content)

    yield from _walk(get_container_element(parent))


def iter_table_cells(table: Table) -> Iterator[_Cell]:
    # Merged cells share one w:tc, so walk the XML instead of table.rows.
    cells = table._tbl.xpath(
        "./w:tr/w:tc | ./w:tr/w:sdt/w:sdtContent/w:tc | ./w:sdt/w:sdtContent/w:tr/w:tc"
    )
    for tc in cells:
        yield _Cell(tc, table)


def iter_paragraphs(container) -> Iterator[Paragraph]:
    """Yields every paragraph of a region in document order, including table cells."""
    for item in iter_block_items(container):
        if isinstance(item, Paragraph):
            yield item
        elif isinstance(item, Table):
            for cell in iter_table_cells(item):
                yield from iter_paragraphs(cell)


def snapshot_blocks(doc: DocumentObject) -> Tuple[BlockRef, ...]:
    """
    Takes an immutable snapshot of all blocks in all regions.
    Mutating passes must work against a snapshot, never a live iterator.
    """
    blocks: List[BlockRef] = []
    counters: dict = {}
    for region, container in iter_document_parts(doc):
        index = counters.get(region, 0)
        counters[region] = index + 1
        for paragraph in iter_paragraphs(container):
            blocks.append(BlockRef(paragraph, region, index))
    return tuple(blocks)


# --- Text model ---
def _iter_runs(element) -> Iterator[Any]:
    for child in element.iterchildren():
        tag = child.tag
        if tag == qn("w:r"):
            yield child
        elif tag == qn("w:sdt"):
            content = child.find(qn("w:sdtContent"))
            if content is not None:
                yield from _iter_runs(content)
        elif tag in _RUN_CONTAINERS:
            yield from _iter_runs(child)
        # w:del and w:moveFrom hold text that is not part of the accepted view


def iter_block_runs(paragraph: Paragraph) -> Iterator[Any]:
    """Yields the visible w:r elements of a paragraph in order."""
    yield from _iter_runs(paragraph._p)


def _iter_segments(paragraph: Paragraph) -> Iterator[TextSegment]:
    offset = 0
    for run in iter_block_runs(paragraph):
        for child in run.iterchildren():
            tag = child.tag
            if tag == qn("w:t"):
                text = child.text or ""
            elif tag == qn("w:tab"):
                text = "\t"
            elif tag in (qn("w:br"), qn("w:cr")):
                text = "\n"
            else:
                continue
            yield TextSegment(child, run, offset, text)
            offset += len(text)


def get_block_text(paragraph: Paragraph) -> str:
    """
    Concatenated visible text of a block.
    Tabs are returned as '\\t' and line breaks as '\\n'.
    """
    return "".join(segment.text for segment in _iter_segments(paragraph))


def is_blank(paragraph: Paragraph) -> bool:
    return not get_block_text(paragraph).strip()


def _has_content(run) -> bool:
    return any(child.tag != qn("w:rPr") for child in run.iterchildren())


def _drop_if_empty(run):
    parent = run.getparent()
    if parent is not None and not _has_content(run):
        parent.remove(run)


def _strip_text(run):
    """Removes text-bearing children from a run, and the run itself if nothing else is left."""
    for child in list(run.iterchildren()):
        if child.tag in _TEXT_TAGS:
            run.remove(child)
    _drop_if_empty(run)


def _append_text(run, text: str):
    """Appends text to a run, emitting w:tab for tab characters."""
    for i, piece in enumerate(text.split("\t")):
        if i > 0:
            run.append(create_element("w:tab"))
        if piece:
            t = create_element("w:t")
            set_text_content(t, piece)
            run.append(t)


def replace_text_range(paragraph: Paragraph, start: int, end: int, replacement: str) -> bool:
    """
    Replaces block text in [start, end) with replacement, keeping run formatting.
    The replacement lands in the run where the range starts.
    """
    if start >= end:
        return False

    inserted = False
    touched_runs = []
    for segment in list(_iter_segments(paragraph)):
        seg_end = segment.start + len(segment.text)
        if seg_end <= start or segment.start >= end:
            continue

        element = segment.element
        if element.tag == qn("w:t"):
            local_start = max(start - segment.start, 0)
            local_end = min(end, seg_end) - segment.start
            new_text = segment.text[:local_start]
            if not inserted:
                new_text += replacement
                inserted = True
            new_text += segment.text[local_end:]
            if new_text:
                set_text_content(element, new_text)
            else:
                segment.run.remove(element)
        else:
            if not inserted and replacement:
                t = create_element("w:t")
                set_text_content(t, replacement)
                element.addprevious(t)
            inserted = True
            segment.run.remove(element)
        touched_runs.append(segment.run)

    for run in touched_runs:
        _drop_if_empty(run)
    return inserted


def sub_block_text(
    paragraph: Paragraph,
    pattern: Pattern,
    repl: Union[str, Callable[[Any], str]],
) -> int:
    """
    re.sub over the block text, applied through replace_text_range.
    A string repl is literal. A callable repl is invoked in left-to-right match order.
    Returns the number of substitutions.
    """
    text = get_block_text(paragraph)
    edits = []
    for match in pattern.finditer(text):
        if match.start() == match.end():
            continue
        new_text = repl(match) if callable(repl) else repl
        edits.append((match.start(), match.end(), new_text))

    for start, end, new_text in reversed(edits):
        replace_text_range(paragraph, start, end, new_text)
    return len(edits)


def set_block_text(paragraph: Paragraph, text: str):
    """
    Rewrites the whole text of a block.

    Without newlines the first text run receives all text and the text of the
    other runs is dropped. With newlines every line becomes its own run, styled
    like the first run and separated by explicit w:br breaks.
    """
    text_runs = [run for run in iter_block_runs(paragraph) if any(c.tag in _TEXT_TAGS for c in run)]

    if not text_runs:
        run = create_element("w:r")
        paragraph._p.append(run)
        text_runs = [run]

    first = text_runs[0]
    rPr = first.find(qn("w:rPr"))

    if "\n" in text:
        for i, line in enumerate(text.split("\n")):
            new_run = create_element("w:r")
            if rPr is not None:
                new_run.append(deepcopy(rPr))
            if i > 0:
                new_run.append(create_element("w:br"))
            _append_text(new_run, line)
            first.addprevious(new_run)
        for run in text_runs:
            _strip_text(run)
        return

    for run in text_runs[1:]:
        _strip_text(run)
    for child in list(first.iterchildren()):
        if child.tag in _TEXT_TAGS:
            first.remove(child)
    _append_text(first, text)


# --- Structure ---
def is_attached(paragraph: Paragraph) -> bool:
    return paragraph._p.getparent() is not None


def remove_block(paragraph: Paragraph) -> bool:
    """
    Detaches a block from the tree. The last paragraph of a table cell is
    emptied instead, since a w:tc must keep at least one w:p.
    """
    p = paragraph._p
    parent = p.getparent()
    if parent is None:
        return False

    if parent.tag == qn("w:tc") and len(parent.findall(qn("w:p"))) == 1:
        for child in list(p.iterchildren()):
            if child.tag != qn("w:pPr"):
                p.remove(child)
        return True

    parent.remove(p)
    return True


def insert_after(anchor, elements):
    """Inserts elements after anchor, keeping their order."""
    current = anchor
    for element in elements:
        current.addnext(element)
        current = element


def get_list_level(paragraph: Paragraph) -> Optional[int]:
    """
    Returns the direct numbering level (w:ilvl) of a paragraph.
    A w:numPr without w:ilvl means level 0. No w:numPr means None.
    """
    p = paragraph._p
    if not p.xpath("./w:pPr/w:numPr"):
        return None
    levels = p.xpath("./w:pPr/w:numPr/w:ilvl/@w:val")
    if not levels:
        return 0
    try:
        return int(levels[0])
    except ValueError:
        return None


def set_numbering(paragraph: Paragraph, num_id: int, level: int):
    pPr = paragraph._p.get_or_add_pPr()
    numPr = pPr.get_or_add_numPr()
    numPr.get_or_add_ilvl().val = level
    numPr.get_or_add_numId().val = num_id


# --- Normalization ---
def _is_plain_run(run) -> bool:
    # Runs with fields, drawings or comment references must not be merged.
    return all(child.tag in _TEXT_TAGS or child.tag == qn("w:rPr") for child in run.iterchildren())


def _rpr_signature(run) -> bytes:
    rPr = run.find(qn("w:rPr"))
    return etree.tostring(rPr) if rPr is not None else b""


def _merge_adjacent_runs(paragraph: Paragraph):
    previous = None
    for child in list(paragraph._p.iterchildren()):
        if child.tag != qn("w:r") or not _is_plain_run(child):
            previous = None
            continue
        if previous is not None and _rpr_signature(previous) == _rpr_signature(child):
            for grandchild in list(child.iterchildren()):
                if grandchild.tag != qn("w:rPr"):
                    previous.append(grandchild)
            paragraph._p.remove(child)
        else:
            previous = child


def normalize_docx(doc: DocumentObject):
    """
    Prepares a template for token matching:
    1. Removes proof errors (spellcheck squiggles), which split runs.
    2. Merges adjacent runs with identical formatting.
    """
    logger.info("Normalizing DOCX structure...")

    for block in snapshot_blocks(doc):
        for proof_err in block.paragraph._p.xpath(".//w:proofErr"):
            proof_err.getparent().remove(proof_err)
        _merge_adjacent_runs(block.paragraph)
