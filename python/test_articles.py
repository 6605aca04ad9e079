"""
Tests for akte/assembly/articles.py — '^' / '#' removal and renumbering.

Run: python3 test_articles.py
From: python/
"""

import sys

sys.path.insert(0, '.')

from docx import Document

from akte.assembly.articles import ArticleRemover, main_article_number
from akte.utils.docx import get_block_text, set_numbering, snapshot_blocks


def _build(*items):
    """items: text, or (text, level) for a numbered block."""
    doc = Document()
    for item in items:
        if isinstance(item, tuple):
            text, level = item
            p = doc.add_paragraph(text)
            set_numbering(p, 1, level)
        else:
            doc.add_paragraph(item)
    return doc


def _texts(doc):
    return [get_block_text(b.paragraph) for b in snapshot_blocks(doc)]


def test_main_article_detection():
    doc = _build(('1. Partijen', 0), '2. Geen lijst', ('3. Lid', 1), ('Artikel', 0))
    numbers = [main_article_number(b) for b in snapshot_blocks(doc)]
    assert numbers == [1, None, None, None]
    print("PASS: test_main_article_detection")


def test_remove_article_and_renumber():
    doc = _build(
        ('1. Partijen', 0),
        'Tekst een',
        ('2. Kinderen', 0),
        'Tekst twee',
        '^',
        ('3. Alimentatie', 0),
        '  3.1 Hoogte van de bijdrage',
        '#',
        'Slot',
    )

    state = ArticleRemover().process_document(doc)

    assert _texts(doc) == [
        '1. Partijen',
        'Tekst een',
        '2. Alimentatie',
        '  2.1 Hoogte van de bijdrage',
        'Slot',
    ], _texts(doc)
    assert state.articles_to_remove == {2}
    assert state.renumbering == {1: 1, 3: 2}
    assert state.removed_blocks == 4
    print("PASS: test_remove_article_and_renumber")


def test_block_marker_only_removes_itself():
    doc = _build(('1. Een', 0), 'a', ' # ', 'b', ('2. Twee', 0))
    state = ArticleRemover().process_document(doc)
    assert _texts(doc) == ['1. Een', 'a', 'b', '2. Twee']
    assert state.articles_to_remove == set()
    assert state.renumbering == {1: 1, 2: 2}
    print("PASS: test_block_marker_only_removes_itself")


def test_markers_must_be_whole_text():
    doc = _build(('1. Een', 0), 'prijs ^ 2', '# kop', ('2. Twee', 0))
    state = ArticleRemover().process_document(doc)
    assert _texts(doc) == ['1. Een', 'prijs ^ 2', '# kop', '2. Twee']
    assert state.removed_blocks == 0
    print("PASS: test_markers_must_be_whole_text")


def test_article_marker_without_article():
    doc = _build('Inleiding', '^', ('1. Een', 0), 'tekst')
    state = ArticleRemover().process_document(doc)
    assert _texts(doc) == ['Inleiding', '1. Een', 'tekst']
    assert state.articles_to_remove == set()
    print("PASS: test_article_marker_without_article")


def test_unnumbered_lookalike_is_not_an_article():
    # '2. Los' has no list level, so the marker belongs to article 1.
    doc = _build(('1. Een', 0), '2. Los', '^', ('3. Drie', 0), '3.1 verwijzing')
    ArticleRemover().process_document(doc)
    assert _texts(doc) == ['1. Drie', '1.1 verwijzing']
    print("PASS: test_unnumbered_lookalike_is_not_an_article")


def test_remove_first_and_last_articles():
    doc = _build(('1. A', 0), '^', ('2. B', 0), 'b', ('3. C', 0), 'c', '^')
    state = ArticleRemover().process_document(doc)
    assert _texts(doc) == ['1. B', 'b']
    assert state.articles_to_remove == {1, 3}
    print("PASS: test_remove_first_and_last_articles")


def test_custom_markers():
    doc = _build(('1. A', 0), '@', ('2. B', 0), '%', 'b')
    ArticleRemover(remove_article_marker='@', remove_block_marker='%').process_document(doc)
    assert _texts(doc) == ['1. B', 'b']

    try:
        ArticleRemover('#', '#')
        assert False, "Expected ValueError"
    except ValueError:
        pass
    print("PASS: test_custom_markers")


def test_no_markers_no_changes():
    doc = _build(('4. Vier', 0), ('7. Zeven', 0))
    state = ArticleRemover().process_document(doc)
    assert _texts(doc) == ['4. Vier', '7. Zeven']
    assert state.renumbering == {}
    print("PASS: test_no_markers_no_changes")


if __name__ == '__main__':
    tests = [
        test_main_article_detection,
        test_remove_article_and_renumber,
        test_block_marker_only_removes_itself,
        test_markers_must_be_whole_text,
        test_article_marker_without_article,
        test_unnumbered_lookalike_is_not_an_article,
        test_remove_first_and_last_articles,
        test_custom_markers,
        test_no_markers_no_changes,
    ]

    passed = 0
    failed = 0
    for t in tests:
        try:
            t()
            passed += 1
        except Exception as e:
            print(f"FAIL: {t.__name__} — {e}")
            failed += 1

    print(f"\n{'=' * 50}")
    print(f"Results: {passed} passed, {failed} failed out of {len(tests)} tests")
    if failed > 0:
        sys.exit(1)
    else:
        print("All tests passed!")
