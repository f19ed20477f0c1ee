"""Metadata catalog of uploaded files and folders, kept in one JSON document.

Every mutation is a full read-modify-write of ``db.json``. Mutations are
funnelled through a single lock so two requests can never both read the old
document and clobber each other's change.
"""
import asyncio
import logging
import uuid
from collections import Counter
from pathlib import Path
from typing import Callable, List, Optional

from pydantic import ValidationError as SchemaError

from .jsondoc import read_array, write_array
from .models import FileRecord, FileView, Stats, join_logical, utcnow

logger = logging.getLogger(__name__)


def is_within(path: str, folder: str) -> bool:
    """True when logical ``path`` is ``folder`` itself or nested under it."""
    return path == folder or path.startswith(folder + "/")


class MetadataStore:
    def __init__(self, document: Path):
        self.document = Path(document)
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------
    async def _load(self) -> List[FileRecord]:
        records = []
        for raw in await read_array(self.document, legacy_key="files"):
            try:
                records.append(FileRecord.model_validate(raw))
            except SchemaError as exc:
                logger.warning("Skipping malformed record %r: %s", raw.get("id"), exc.error_count())
        return records

    async def _save(self, records: List[FileRecord]) -> None:
        await write_array(self.document, [r.to_json() for r in records])

    async def _mutate(self, change: Callable[[List[FileRecord]], object]):
        async with self._lock:
            records = await self._load()
            result = change(records)
            await self._save(records)
            return result

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    async def list_all(self) -> List[FileRecord]:
        return await self._load()

    async def list_folder(self, path: str) -> List[FileRecord]:
        return [r for r in await self._load() if r.path == path]

    async def get(self, record_id: str) -> Optional[FileRecord]:
        for record in await self._load():
            if record.id == record_id:
                return record
        return None

    async def find_folder(self, full_path: str) -> Optional[FileRecord]:
        for record in await self._load():
            if record.is_directory and record.full_path == full_path:
                return record
        return None

    async def aggregate_stats(self, recent_count: int = 5) -> Stats:
        records = await self._load()
        # stable sort keeps insertion order among equal timestamps
        recent = sorted(records, key=lambda r: r.uploaded_at, reverse=True)[:recent_count]
        return Stats(
            total_files=len(records),
            total_size=sum(r.size for r in records),
            count_by_type=dict(Counter(r.type or "unknown" for r in records)),
            recent=[_summary(r) for r in recent],
        )

    # ------------------------------------------------------------------
    # mutations
    # ------------------------------------------------------------------
    async def insert(self, record: FileRecord) -> FileRecord:
        """Append ``record`` under a fresh id and upload time."""
        stored = record.model_copy(update={"id": uuid.uuid4().hex, "uploaded_at": utcnow()})

        def change(records):
            records.append(stored)

        await self._mutate(change)
        return stored

    async def remove(self, record_id: str) -> Optional[FileRecord]:
        def change(records):
            for i, record in enumerate(records):
                if record.id == record_id:
                    return records.pop(i)
            return None

        return await self._mutate(change)

    async def remove_by_folder_prefix(self, folder: str) -> int:
        """Drop every record whose path is ``folder`` or nested under it."""
        if not folder:
            raise ValueError("refusing to cascade over the storage root")

        def change(records):
            keep = [r for r in records if not is_within(r.path, folder)]
            removed = len(records) - len(keep)
            records[:] = keep
            return removed

        return await self._mutate(change)

    async def rename(self, record_id: str, new_name: str) -> Optional[FileRecord]:
        """Rename a record; folders carry their descendants' paths along.

        Returns the updated record or None when ``record_id`` is unknown.
        """

        def change(records):
            for i, record in enumerate(records):
                if record.id == record_id:
                    break
            else:
                return None

            update = {"name": new_name}
            if record.is_directory:
                update["system_name"] = new_name
                old_prefix = record.full_path
                new_prefix = join_logical(record.path, new_name)
                for j, other in enumerate(records):
                    if is_within(other.path, old_prefix):
                        records[j] = other.model_copy(
                            update={"path": new_prefix + other.path[len(old_prefix):]}
                        )
            records[i] = record.model_copy(update=update)
            return records[i]

        return await self._mutate(change)


def _summary(record: FileRecord) -> FileView:
    return FileView(
        id=record.id,
        name=record.name,
        type=record.type,
        path=record.path,
        is_directory=record.is_directory,
        size=record.size,
        uploaded_at=record.uploaded_at,
        owner_id=record.owner_id,
        owner_username=record.owner_username,
        owner_name=record.owner_name,
        owner_ip=record.owner_ip,
    )
