import structlog
from docx.document import Document as DocumentObject
from docx.oxml.ns import qn

from akte.utils.docx import create_attribute, create_element, get_container_element, iter_document_parts

logger = structlog.get_logger(__name__)


def _neutralize_run_style(run):
    """Forces black text and removes shading, which content controls often carry as placeholder styling."""
    rPr = run.get_or_add_rPr() if hasattr(run, "get_or_add_rPr") else run.find(qn("w:rPr"))
    if rPr is None:
        rPr = create_element("w:rPr")
        run.insert(0, rPr)

    for old in rPr.findall(qn("w:color")) + rPr.findall(qn("w:shd")):
        rPr.remove(old)

    color = create_element("w:color")
    create_attribute(color, "w:val", "000000")
    if hasattr(rPr, "_insert_color"):
        rPr._insert_color(color)
    else:
        rPr.append(color)


def unwrap_content_controls(doc: DocumentObject) -> int:
    """
    Replaces every w:sdt with the children of its w:sdtContent, innermost first.
    Children are moved, not copied, so Paragraph handles stay valid.
    Returns the number of unwrapped controls.
    """
    count = 0
    for region, container in iter_document_parts(doc):
        root = get_container_element(container)
        # Reverse document order visits nested controls before their parents.
        for sdt in reversed(list(root.iter(qn("w:sdt")))):
            parent = sdt.getparent()
            if parent is None:
                continue

            content = sdt.find(qn("w:sdtContent"))
            if content is not None:
                for run in content.iter(qn("w:r")):
                    _neutralize_run_style(run)
                for child in list(content):
                    sdt.addprevious(child)

            parent.remove(sdt)
            count += 1

    if count:
        logger.info(f"Unwrapped {count} content controls")
    return count
