"""Tests for cover variants and geometry."""

import pytest

from bookpress.conversion.covers import (
    AMAZON,
    CASE_WRAP,
    COIL_BOUND,
    COVER_VARIANTS,
    MAIN,
    PERFECT_BOUND,
    breakpoint_spine,
    cover_height,
    cover_html,
    cover_width,
    spine_width,
)

from fakes import make_node


@pytest.fixture
def book():
    node = make_node(1, "Chemistry")
    node.print_info.title = "General Chemistry"
    node.print_info.author_name = "A. Author"
    node.summary = "An introduction."
    return node


class TestBreakpoints:
    @pytest.mark.parametrize("pages, expected", [
        (24, None),
        (25, 0.25),
        (84, 0.25),
        (100, 0.5),
        (390, 1.1875),
        (801, 2.125),
        (2000, 2.125),
    ])
    def test_largest_threshold_below_page_count(self, pages, expected):
        assert breakpoint_spine(pages) == expected


class TestGeometry:
    def test_variant_names(self):
        assert [v.name for v in COVER_VARIANTS] == ["Amazon", "CaseWrap", "CoilBound", "Main", "PerfectBound"]

    def test_case_wrap(self):
        assert spine_width(CASE_WRAP, 100) == 0.5
        assert cover_width(CASE_WRAP, 100) == pytest.approx(19.25)
        assert cover_height(CASE_WRAP, 100) == 12.75

    def test_case_wrap_thin_book_uses_paperback_formula(self):
        assert spine_width(CASE_WRAP, 24) == pytest.approx(0.114)
        assert cover_width(CASE_WRAP, 24) == pytest.approx(17.364)

    def test_amazon_is_linear(self):
        assert spine_width(AMAZON, 500) == pytest.approx(1.126)
        assert cover_width(AMAZON, 500) == pytest.approx(18.501)
        assert cover_height(AMAZON, 500) == 11.25

    def test_perfect_bound(self):
        assert spine_width(PERFECT_BOUND, 444) == pytest.approx(1.06, abs=0.0011)
        assert cover_width(PERFECT_BOUND, 444) == pytest.approx(18.31, abs=0.0011)
        assert cover_height(PERFECT_BOUND, 444) == 11.25

    def test_coil_bound_has_no_spine(self):
        assert spine_width(COIL_BOUND, 300) == 0
        assert cover_width(COIL_BOUND, 300) == 17.25

    def test_main_is_letter_front_cover(self):
        assert cover_width(MAIN, None) == 8.5
        assert cover_height(MAIN, None) == 11
        assert spine_width(MAIN, 300) == 0

    def test_wider_books_get_wider_spines(self):
        for variant in (AMAZON, CASE_WRAP, PERFECT_BOUND):
            assert spine_width(variant, 600) > spine_width(variant, 100)


class TestCoverHtml:
    def test_wraparound_cover_has_all_panels(self, book):
        html = cover_html(book, CASE_WRAP, 300, "#127BC4")

        assert 'id="backContainer"' in html
        assert 'id="spine"' in html
        assert 'id="frontContainer"' in html
        assert "General Chemistry" in html
        assert "#127BC4" in html
        assert "padding: 117px 50px" in html

    def test_coil_bound_omits_spine(self, book):
        html = cover_html(book, COIL_BOUND, 300, "#127BC4")
        assert 'id="spine"' not in html
        assert 'id="backContainer"' in html

    def test_main_is_front_only(self, book):
        html = cover_html(book, MAIN, None, "#127BC4")
        assert 'id="frontContainer"' in html
        assert 'id="backContainer"' not in html
        assert "padding: 117px 50px" not in html

    def test_escapes_metadata(self, book):
        book.print_info.title = "Acids & <Bases>"
        html = cover_html(book, MAIN, None, "#000")
        assert "Acids &amp; &lt;Bases&gt;" in html
