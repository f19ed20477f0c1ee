import asyncio
import json
from datetime import datetime, timezone

from lanshare.metadata_store import MetadataStore
from lanshare.models import FileRecord


def folder(name, path=""):
    return FileRecord(name=name, system_name=name, path=path, is_directory=True, type="folder")


def file(name, path="", size=1):
    return FileRecord(name=name, system_name=f"x-{name}", path=path, size=size, type=name.rsplit(".", 1)[-1])


async def test_insert_assigns_id_and_timestamp(store):
    a = await store.insert(file("a.txt"))
    b = await store.insert(file("b.txt"))
    assert a.id and b.id and a.id != b.id
    assert a.uploaded_at.year >= 2024
    assert [r.id for r in await store.list_all()] == [a.id, b.id]
    assert (await store.get(b.id)).name == "b.txt"
    assert await store.get("nope") is None


async def test_document_is_camel_case_array(store, settings):
    await store.insert(folder("Docs"))
    data = json.loads(settings.metadata_file.read_text())
    assert isinstance(data, list)
    assert data[0]["systemName"] == "Docs"
    assert data[0]["isDirectory"] is True
    assert "uploadedAt" in data[0]


async def test_missing_or_corrupt_document_reads_empty(store, settings):
    assert await store.list_all() == []
    settings.metadata_file.write_text("{not json")
    assert await store.list_all() == []
    # the next write replaces the corrupt document
    await store.insert(file("a.txt"))
    assert len(await store.list_all()) == 1


async def test_legacy_wrapper_and_missing_system_name(settings):
    settings.metadata_file.write_text(
        json.dumps({"files": [{"id": "1", "name": "old.txt", "path": "", "ownerIp": "10.0.0.5"}, {"bogus": 1}]})
    )
    records = await MetadataStore(settings.metadata_file).list_all()
    assert len(records) == 1
    assert records[0].system_name == "old.txt"
    assert records[0].owner_ip == "10.0.0.5"


async def test_rename_folder_cascades(store):
    a = await store.insert(folder("A"))
    f = await store.insert(file("f.txt", "A"))
    b = await store.insert(folder("B", "A"))
    g = await store.insert(file("g.txt", "A/B"))
    other = await store.insert(file("h.txt", "AB"))

    renamed = await store.rename(a.id, "A2")
    assert renamed.name == "A2" and renamed.system_name == "A2"
    assert (await store.get(f.id)).path == "A2"
    assert (await store.get(b.id)).path == "A2"
    assert (await store.get(g.id)).path == "A2/B"
    # sibling with a shared prefix is untouched
    assert (await store.get(other.id)).path == "AB"


async def test_rename_file_keeps_system_name(store):
    f = await store.insert(file("f.txt"))
    renamed = await store.rename(f.id, "notes.txt")
    assert renamed.name == "notes.txt"
    assert renamed.system_name == "x-f.txt"
    assert await store.rename("missing", "x") is None


async def test_remove_by_folder_prefix(store):
    await store.insert(folder("A"))
    await store.insert(file("f.txt", "A"))
    await store.insert(folder("B", "A"))
    await store.insert(file("g.txt", "A/B"))
    keep = await store.insert(file("k.txt", "AB"))

    assert await store.remove_by_folder_prefix("A") == 3
    names = {r.name for r in await store.list_all()}
    assert names == {"A", "k.txt"}
    assert await store.get(keep.id) is not None


async def test_remove(store):
    f = await store.insert(file("f.txt"))
    assert (await store.remove(f.id)).id == f.id
    assert await store.remove(f.id) is None
    assert await store.list_all() == []


async def test_aggregate_stats(store, settings):
    when = datetime(2025, 1, 1, tzinfo=timezone.utc)
    records = [
        file("a.pdf", size=10).model_copy(update={"id": "a", "uploaded_at": when}),
        file("b.pdf", size=5).model_copy(update={"id": "b", "uploaded_at": when}),
        file("c.txt", size=1).model_copy(update={"id": "c", "uploaded_at": datetime(2024, 1, 1, tzinfo=timezone.utc)}),
        folder("D").model_copy(update={"id": "d", "uploaded_at": datetime(2026, 1, 1, tzinfo=timezone.utc)}),
    ]
    settings.metadata_file.write_text(json.dumps([r.to_json() for r in records]))

    stats = await store.aggregate_stats(recent_count=3)
    assert stats.total_files == 4
    assert stats.total_size == 16
    assert stats.count_by_type == {"pdf": 2, "txt": 1, "folder": 1}
    # newest first, equal timestamps in insertion order
    assert [v.id for v in stats.recent] == ["d", "a", "b"]


async def test_concurrent_inserts_are_not_lost(store):
    await asyncio.gather(*(store.insert(file(f"{i}.txt")) for i in range(20)))
    assert len(await store.list_all()) == 20
