import asyncio
import json
from pathlib import Path

import pytest

from kpi_ai.config import VectorStoreConfig
from kpi_ai.errors import DimensionMismatchError
from kpi_ai.retrieval.vector_store import JsonFileVectorStore, cosine_similarity
from kpi_ai.types import VectorDocument


def _doc(doc_id: str, embedding: list[float], **metadata: str) -> VectorDocument:
    return VectorDocument(
        id=doc_id,
        source_id="res-1",
        content=f"content of {doc_id}",
        metadata=dict(metadata),
        embedding=embedding,
    )


def _store(path: Path) -> JsonFileVectorStore:
    return JsonFileVectorStore(VectorStoreConfig(path=path))


def test_cosine_similarity_properties() -> None:
    v = [0.3, -1.2, 4.0]
    assert cosine_similarity(v, v) == pytest.approx(1.0)
    assert cosine_similarity(v, [-x for x in v]) == pytest.approx(-1.0)
    assert cosine_similarity([0.0, 0.0, 0.0], v) == 0.0
    assert cosine_similarity([], []) == 0.0


def test_missing_file_starts_empty_and_creates_directory(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "store.json"
    store = _store(path)

    assert len(store) == 0
    assert path.parent.is_dir()


@pytest.mark.asyncio
async def test_search_on_empty_store_returns_empty_list(tmp_path: Path) -> None:
    store = _store(tmp_path / "store.json")
    assert await store.search([1.0, 0.0]) == []


@pytest.mark.asyncio
async def test_search_orders_by_descending_similarity(tmp_path: Path) -> None:
    store = _store(tmp_path / "store.json")
    await store.add_documents(
        [_doc("far", [0.0, 1.0]), _doc("near", [1.0, 0.0]), _doc("mid", [0.7, 0.7])]
    )

    results = await store.search([1.0, 0.1], limit=3)
    scored = await store.search_scored([1.0, 0.1], limit=2)

    assert [doc.id for doc in results] == ["near", "mid", "far"]
    assert [item.rank for item in scored] == [1, 2]
    assert scored[0].score >= scored[1].score


@pytest.mark.asyncio
async def test_metadata_filter_limits_candidates(tmp_path: Path) -> None:
    store = _store(tmp_path / "store.json")
    await store.add_documents(
        [_doc("hr", [1.0, 0.0], department="HR"), _doc("fin", [1.0, 0.0], department="Finance")]
    )

    results = await store.search([1.0, 0.0], metadata_filter={"department": "HR"})

    assert [doc.id for doc in results] == ["hr"]


@pytest.mark.asyncio
async def test_documents_survive_reload(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    docs = [_doc("a", [0.25, 0.5], fileName="a.txt"), _doc("b", [1.0, -0.5])]
    await _store(path).add_documents(docs)

    reloaded = _store(path)

    assert reloaded.documents == docs
    assert isinstance(json.loads(path.read_text(encoding="utf-8")), list)


@pytest.mark.asyncio
async def test_concurrent_adds_lose_nothing(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    store = _store(path)

    await asyncio.gather(
        store.add_documents([_doc(f"x{i}", [1.0, float(i)]) for i in range(3)]),
        store.add_documents([_doc(f"y{i}", [float(i), 1.0]) for i in range(2)]),
    )

    assert len(store) == 5
    assert len(_store(path)) == 5


@pytest.mark.asyncio
async def test_add_picks_up_writes_from_another_instance(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    first = _store(path)
    second = _store(path)

    await first.add_documents([_doc("a", [1.0, 0.0])])
    await second.add_documents([_doc("b", [0.0, 1.0])])

    assert sorted(doc.id for doc in _store(path).documents) == ["a", "b"]


def test_malformed_file_is_treated_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    path.write_text("{not json", encoding="utf-8")
    assert len(_store(path)) == 0

    path.write_text('{"id": "not-a-list"}', encoding="utf-8")
    assert len(_store(path)) == 0


@pytest.mark.asyncio
async def test_dimension_mismatch_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    store = _store(path)
    await store.add_documents([_doc("a", [1.0, 0.0])])

    with pytest.raises(DimensionMismatchError):
        await store.add_documents([_doc("b", [1.0, 0.0, 0.0])])

    assert store.dimension == 2
    assert len(_store(path)) == 1


@pytest.mark.asyncio
async def test_dimension_check_can_be_disabled(tmp_path: Path) -> None:
    store = JsonFileVectorStore(
        VectorStoreConfig(path=tmp_path / "store.json", enforce_dimension=False)
    )
    await store.add_documents([_doc("a", [1.0, 0.0]), _doc("b", [1.0, 0.0, 0.0])])

    assert len(store) == 2


@pytest.mark.asyncio
async def test_empty_batch_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        await _store(tmp_path / "store.json").add_documents([])


@pytest.mark.asyncio
async def test_io_error_propagates_and_keeps_memory_unchanged(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    path.mkdir()
    store = _store(path)

    with pytest.raises(OSError):
        await store.add_documents([_doc("a", [1.0, 0.0])])

    assert len(store) == 0


@pytest.mark.asyncio
async def test_clear_removes_everything(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    store = _store(path)
    await store.add_documents([_doc("a", [1.0, 0.0])])

    await store.clear()

    assert len(store) == 0
    assert json.loads(path.read_text(encoding="utf-8")) == []
