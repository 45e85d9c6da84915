"""Tests for the docqa command line."""
import pytest

from docqa.cli import build_parser, main
from tests.fakes import FakeEmbedder, FakeGenerator, build_service

pytestmark = pytest.mark.integration

ANIMALS = "Cats are mammals. Dogs are mammals too."


@pytest.fixture
def factory(db_path):
    def make_service():
        return build_service(db_path, FakeEmbedder(), FakeGenerator())

    return make_service


@pytest.fixture
def animals_file(tmp_path):
    path = tmp_path / "animals.txt"
    path.write_text(ANIMALS, encoding="utf-8")
    return path


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_ingest_and_stats(factory, animals_file, capsys):
    assert main(["ingest", str(animals_file)], service_factory=factory) == 0
    assert "2 fragments" in capsys.readouterr().out

    assert main(["stats"], service_factory=factory) == 0
    out = capsys.readouterr().out
    assert "Total fragments: 2" in out
    assert "animals.txt: 2" in out


def test_ingest_with_explicit_source_id(factory, animals_file, capsys):
    assert main(["ingest", str(animals_file), "--source-id", "zoo"], service_factory=factory) == 0

    main(["stats"], service_factory=factory)
    assert "zoo: 2" in capsys.readouterr().out


def test_ingest_reports_failed_files(factory, animals_file, tmp_path, capsys):
    status = main(
        ["ingest", str(animals_file), str(tmp_path / "missing.txt")],
        service_factory=factory,
    )

    out = capsys.readouterr().out
    assert status == 1
    assert "failed: File not found" in out
    assert "Fragments created: 2" in out


def test_source_id_needs_single_path(factory, animals_file, capsys):
    status = main(
        ["ingest", str(animals_file), str(animals_file), "--source-id", "zoo"],
        service_factory=factory,
    )

    assert status == 1


def test_ask_prints_answer_and_sources(factory, animals_file, capsys):
    main(["ingest", str(animals_file)], service_factory=factory)
    capsys.readouterr()

    assert main(["ask", "What are cats?"], service_factory=factory) == 0

    out = capsys.readouterr().out
    assert "Cats are **mammals**." in out
    assert "[1] animals.txt" in out


def test_ask_streams_tokens(factory, animals_file, capsys):
    main(["ingest", str(animals_file)], service_factory=factory)
    capsys.readouterr()

    assert main(["ask", "What are cats?", "--stream"], service_factory=factory) == 0

    out = capsys.readouterr().out
    assert "Cats are **mammals**." in out
    assert "Sources" in out


def test_streamed_ask_without_grounding_fails(factory, animals_file, capsys):
    main(["ingest", str(animals_file)], service_factory=factory)
    capsys.readouterr()

    assert main(["ask", "Tell me about birds", "--stream"], service_factory=factory) == 1
    assert "No relevant documents" in capsys.readouterr().out


def test_ask_rejects_empty_question(factory, capsys):
    assert main(["ask", "  "], service_factory=factory) == 1
    assert "Query cannot be empty" in capsys.readouterr().out


def test_remove(factory, animals_file, capsys):
    main(["ingest", str(animals_file)], service_factory=factory)
    capsys.readouterr()

    assert main(["remove", "animals.txt"], service_factory=factory) == 0
    assert "Removed 2 fragments from animals.txt" in capsys.readouterr().out
