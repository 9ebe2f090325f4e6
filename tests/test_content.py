"""Tests for content-tree helpers, licenses and page templates."""

import pytest

from bookpress.content import BookID, MatterType, get_license, has_matter
from bookpress.conversion import templates

from fakes import make_node, structured_book


class TestContentTree:
    def test_book_id_key(self):
        assert BookID("chem", 12345).key == "chem-12345"

    def test_node_key_and_flags(self):
        node = make_node(7, "Front Matter")
        assert node.key == "chem-7"
        assert node.is_matter_container
        assert not node.is_main_toc

    def test_main_toc_tags(self):
        assert make_node(1, "Book", tags=["coverpage:yes"]).is_main_toc
        assert make_node(1, "Book", tags=["coverpage:nocommons"]).is_main_toc

    def test_matter_type_stored_as_value(self):
        node = make_node(11, "TitlePage", matter_type=MatterType.FRONT)
        assert node.matter_type == "Front"
        assert node.matter_type == MatterType.FRONT

    def test_has_matter(self):
        book = structured_book()
        assert has_matter(book, MatterType.FRONT)
        assert has_matter(book, MatterType.BACK)

        bare = make_node(1, "Bare", subpages=[make_node(2, "Chapter")])
        assert not has_matter(bare, MatterType.FRONT)
        assert not has_matter(bare, "Back")


class TestLicense:
    def test_creative_commons_with_version(self):
        info = get_license(["license:ccbyncsa", "licenseversion:30"])
        assert info.label == "CC BY-NC-SA 3.0"
        assert info.link == "https://creativecommons.org/licenses/by-nc-sa/3.0/"
        assert info.version == "3.0"

    def test_version_defaults_to_four(self):
        assert get_license(["license:ccby"]).label == "CC BY 4.0"

    def test_other_licenses(self):
        assert get_license(["license:publicdomain"]).label == "Public Domain"
        assert get_license(["license:arr"]).version is None

    @pytest.mark.parametrize("tags", [[], ["license:unknown"], ["article:topic"]])
    def test_unknown_license(self, tags):
        assert get_license(tags) is None


class TestTemplates:
    def test_footer_contains_license_and_permalink(self):
        node = make_node(42, "1.1: Atoms", tags=["license:ccby"])
        footer = templates.footer_for(node, "#127BC4", "1")

        assert "CC BY 4.0" in footer
        assert "https://chem.libretexts.org/@go/page/42" in footer
        assert "1.<div class=\"pageNumber\">" in footer

    def test_footer_without_prefix(self):
        footer = templates.footer_for(make_node(42, "Atoms"), "#127BC4", "")
        assert '<div class="footer-pagenum"><div class="pageNumber">' in footer

    def test_headers_can_be_disabled_by_tag(self):
        assert templates.shows_headers(make_node(1, "Page"))
        assert not templates.shows_headers(make_node(1, "Page", tags=["printoptions:no-header"]))

    def test_main_toc_url(self):
        book = structured_book()
        assert templates.toc_url(book) == book.url + "/00:_Front_Matter/03:_Table_of_Contents"

        chapter = book.subpages[1]
        assert templates.toc_url(chapter) == chapter.url

    def test_directory_page_type(self):
        book = structured_book()
        assert templates.directory_page_type(book) == "Table of Contents"
        assert templates.directory_page_type(book.subpages[1]) == "Chapter Overview"
        assert templates.directory_page_type(make_node(5, "Unit", tags=["article:topic-category"])) == (
            "Section Overview"
        )

    def test_directory_listing_skips_generated_front_matter(self):
        """TitlePage, InfoPage and the TOC itself never appear in a listing."""
        listing = templates.build_directory_listing(structured_book())

        assert "TitlePage" not in listing
        assert "InfoPage" not in listing
        assert "1: Basics" in listing
        assert "1.1: Atoms" in listing
        assert "Glossary" in listing
        assert "column-count: 2" in listing

    def test_guide_listing_is_indented(self):
        chapter = structured_book().subpages[1]
        listing = templates.build_directory_listing(chapter)

        assert "indent1" in listing
        assert "column-count" not in listing

    def test_empty_node_has_no_listing(self):
        assert templates.build_directory_listing(make_node(1, "Leaf")) == ""

    def test_solutions_css(self):
        assert templates.extra_page_css(make_node(1, "Page", tags=["hidetop:solutions"]))
        assert templates.extra_page_css(make_node(1, "Page")) is None
