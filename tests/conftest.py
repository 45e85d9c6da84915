"""Shared fixtures for the docqa test suite."""
import pytest

from docqa.rag.vector_index import VectorIndex
from tests.fakes import FakeEmbedder, FakeGenerator, build_service


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "docqa-test.sqlite"


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
async def index(db_path):
    vector_index = VectorIndex(db_path, embedding_model="fake-embed")
    await vector_index.load()
    return vector_index


@pytest.fixture
async def service(db_path, embedder, generator):
    qa_service = build_service(db_path, embedder, generator)
    await qa_service.start()
    return qa_service
