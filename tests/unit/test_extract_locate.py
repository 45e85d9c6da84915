"""Tests for document extraction and fragment location mapping."""
import fitz
import pytest

from docqa.errors import ValidationError
from docqa.rag.extract import ExtractedDocument, PageSpan, extract, parse_frontmatter
from docqa.rag.locate import find_page, map_segments_to_locations


class TestParseFrontmatter:
    def test_frontmatter_is_split(self):
        content = "---\ntitle: Animals\ntags: [cats]\n---\n# Cats\nCats are mammals."

        frontmatter, body = parse_frontmatter(content)

        assert frontmatter == {"title": "Animals", "tags": ["cats"]}
        assert body == "# Cats\nCats are mammals."

    def test_no_frontmatter(self):
        assert parse_frontmatter("# Cats\n") == ({}, "# Cats\n")

    def test_invalid_yaml_is_ignored(self):
        frontmatter, body = parse_frontmatter("---\ntitle: [unclosed\n---\nBody text.")

        assert frontmatter == {}
        assert body == "Body text."

    def test_non_mapping_frontmatter_is_ignored(self):
        frontmatter, _ = parse_frontmatter("---\n- a\n- b\n---\nBody text.")

        assert frontmatter == {}


class TestExtract:
    def test_markdown_drops_frontmatter(self, tmp_path):
        path = tmp_path / "notes.md"
        path.write_text("---\ntitle: Notes\n---\n\nCats are mammals.\n", encoding="utf-8")

        document = extract(path)

        assert document.full_text == "Cats are mammals."
        assert document.metadata == {"title": "Notes"}
        assert document.pages == [PageSpan(page_number=1, char_start=0, char_end=17)]

    def test_plain_text_keeps_frontmatter_like_content(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("---\nnot: yaml\n---\nText.", encoding="utf-8")

        document = extract(path)

        assert document.full_text.startswith("---")
        assert document.metadata == {}

    def test_unsupported_suffix_rejected(self, tmp_path):
        path = tmp_path / "slides.pptx"
        path.write_bytes(b"binary")

        with pytest.raises(ValidationError) as exc_info:
            extract(path)

        assert exc_info.value.field == "file"

    def test_missing_file_rejected(self, tmp_path):
        with pytest.raises(ValidationError):
            extract(tmp_path / "missing.txt")

    def test_pdf_pages_have_spans(self, tmp_path):
        path = tmp_path / "animals.pdf"
        pdf = fitz.open()
        pdf.new_page().insert_text((72, 72), "Cats are mammals.")
        pdf.new_page().insert_text((72, 72), "Birds lay eggs.")
        pdf.save(str(path))
        pdf.close()

        document = extract(path)

        assert document.full_text == "Cats are mammals.\nBirds lay eggs."
        assert document.pages == [
            PageSpan(page_number=1, char_start=0, char_end=17),
            PageSpan(page_number=2, char_start=18, char_end=33),
        ]


class TestFindPage:
    PAGES = [
        PageSpan(page_number=1, char_start=0, char_end=100),
        PageSpan(page_number=2, char_start=101, char_end=200),
    ]

    def test_offset_inside_a_span(self):
        assert find_page(0, self.PAGES, 200) == 1
        assert find_page(150, self.PAGES, 200) == 2

    def test_offset_between_spans_uses_estimate(self):
        assert find_page(100, self.PAGES, 200) == 1

    def test_offset_past_the_end_is_clamped(self):
        assert find_page(500, self.PAGES, 200) == 2

    def test_no_page_information(self):
        assert find_page(10, [], 200) is None


class TestMapSegmentsToLocations:
    def test_offsets_are_cumulative(self):
        document = ExtractedDocument(
            full_text="Cats are mammals.\nBirds lay eggs.",
            pages=[
                PageSpan(page_number=1, char_start=0, char_end=17),
                PageSpan(page_number=2, char_start=18, char_end=33),
            ],
        )

        locations = map_segments_to_locations(["Cats are mammals.", "Birds lay eggs."], document)

        assert [(l.char_start, l.char_end) for l in locations] == [(0, 17), (17, 32)]
        assert [l.page for l in locations] == [1, 2]

    def test_text_without_pages_has_no_page(self):
        document = ExtractedDocument(full_text="Cats are mammals.")

        locations = map_segments_to_locations(["Cats are mammals."], document)

        assert locations[0].page is None
        assert locations[0].char_end == 17
