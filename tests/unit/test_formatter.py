"""Tests for answer formatting, citations and prompt building."""
from docqa.rag.formatter import build_citations, build_link, format_answer_html
from docqa.rag.prompts import STRICT_MODE_INSTRUCTIONS, build_grounded_prompt
from tests.fakes import make_ranked


class TestFormatAnswerHtml:
    def test_empty_text(self):
        assert format_answer_html("") == ""

    def test_markup_in_answer_is_escaped(self):
        assert format_answer_html("a < b & <script>") == "<p>a &lt; b &amp; &lt;script&gt;</p>"

    def test_paragraphs_and_line_breaks(self):
        assert format_answer_html("Hello\nworld\n\nNext") == "<p>Hello<br>world</p><p>Next</p>"

    def test_bullet_list_is_not_wrapped_in_paragraph(self):
        html = format_answer_html("Intro:\n- one\n* two\nAfter")

        assert html == "<p>Intro:</p><ul><li>one</li><li>two</li></ul><p>After</p>"

    def test_numbered_list(self):
        assert format_answer_html("1. first\n2. second") == "<ol><li>first</li><li>second</li></ol>"

    def test_headers(self):
        html = format_answer_html("# Title\n## Section\n### Detail")

        assert html == "<h1>Title</h1><h2>Section</h2><h3>Detail</h3>"

    def test_bold_and_emphasis(self):
        html = format_answer_html("**Cats** are _mammals_ per snake_case_name")

        assert html == "<p><strong>Cats</strong> are <em>mammals</em> per snake_case_name</p>"

    def test_emphasis_inside_list_items(self):
        assert format_answer_html("- **key** point") == "<ul><li><strong>key</strong> point</li></ul>"


class TestBuildCitations:
    def test_citations_follow_rank_order(self):
        ranked = [
            make_ranked("Cats are mammals.", 0.912345, source_id="animals.pdf", page=3),
            make_ranked("Dogs are mammals too.", 0.5, source_id="notes.txt"),
        ]

        citations = build_citations(ranked)

        assert [c.rank for c in citations] == [1, 2]
        assert citations[0].similarity == 0.9123
        assert citations[0].page == 3
        assert citations[0].link == "/api/documents/animals.pdf?page=3"
        assert citations[1].link == "/api/documents/notes.txt"

    def test_long_preview_is_truncated(self):
        text = "word " * 40
        citation = build_citations([make_ranked(text, 0.5)])[0]

        assert citation.preview == text[:100] + "..."

    def test_short_preview_is_kept(self):
        assert build_citations([make_ranked("Short.", 0.5)])[0].preview == "Short."

    def test_link_quotes_source_id(self):
        assert build_link("my report.pdf", 2) == "/api/documents/my%20report.pdf?page=2"


class TestGroundedPrompt:
    def test_context_follows_rank_order(self):
        ranked = [make_ranked("Second best.", 0.9), make_ranked("Third best.", 0.4)]

        prompt = build_grounded_prompt("What is best?", ranked, strict=True)

        assert prompt.index("Second best.") < prompt.index("Third best.")
        assert "Context:\nSecond best.\n\nThird best.\n\nQuestion: What is best?\n\nAnswer:" in prompt
        assert prompt.endswith("Answer:")

    def test_strict_mode_adds_instructions(self):
        ranked = [make_ranked("Cats are mammals.", 0.9)]

        strict = build_grounded_prompt("What are cats?", ranked, strict=True)
        lenient = build_grounded_prompt("What are cats?", ranked, strict=False)

        assert strict.startswith(STRICT_MODE_INSTRUCTIONS)
        assert STRICT_MODE_INSTRUCTIONS not in lenient
