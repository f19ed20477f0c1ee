"""File and folder operations.

Each operation keeps the directory tree under the storage root and the
metadata catalog in step, checks ownership before touching anything, and
publishes a change notification once it has succeeded. There is no
rollback: if the disk half succeeds and the catalog half fails the two stay
out of step until the next listing papers over it.
"""
import asyncio
import logging
import shutil
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

import aiofiles
import aiofiles.os

from .config import Settings
from .errors import Conflict, DriveError, NotFound, PayloadTooLarge, StorageFault, ValidationError
from .metadata_store import MetadataStore
from .models import (
    FOLDER_TYPE,
    Actor,
    FileRecord,
    FileView,
    Stats,
    StorageUsage,
    join_logical,
)
from .notifier import Notifier
from .paths import PathResolver, clean_name, file_type, upload_basename
from .permissions import can_mutate, ensure_can_mutate, owner_fields

logger = logging.getLogger(__name__)


@contextmanager
def storage_errors(action: str):
    """Turn an unexpected OSError into a StorageFault, logging the detail."""
    try:
        yield
    except OSError as exc:
        logger.exception("%s failed", action)
        raise StorageFault() from exc


def declared_size(item) -> int:
    """Size of an uploaded part without consuming it."""
    size = getattr(item, "size", None)
    if size is not None:
        return size
    f = item.file
    pos = f.tell()
    f.seek(0, 2)
    size = f.tell()
    f.seek(pos)
    return size


class FileService:
    def __init__(self, settings: Settings, store: MetadataStore, resolver: PathResolver, notifier: Notifier):
        self.settings = settings
        self.store = store
        self.resolver = resolver
        self.notifier = notifier
        # mkdir / rename / rmtree / upload finalize and their catalog writes
        self._tree_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    async def _get(self, record_id: Optional[str]) -> FileRecord:
        if not record_id:
            raise ValidationError("File id is required")
        record = await self.store.get(record_id)
        if record is None:
            raise NotFound("File not found")
        return record

    async def _require_folder(self, logical: str) -> None:
        if logical and await self.store.find_folder(logical) is None:
            raise NotFound("Folder not found")

    async def view(self, record: FileRecord, actor: Optional[Actor] = None) -> FileView:
        """Record plus live disk stat; missing bytes give zero/default fields."""
        try:
            st = await aiofiles.os.stat(self.resolver.record_path(record.path, record.system_name))
        except (OSError, ValidationError):
            logger.warning("Record %s (%r) has nothing on disk", record.id, record.full_path)
            st = None
        return FileView(
            id=record.id,
            name=record.name,
            type=record.type,
            path=record.path,
            is_directory=record.is_directory,
            size=0 if st is None or record.is_directory else st.st_size,
            uploaded_at=record.uploaded_at,
            modified_at=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc) if st else None,
            owner_id=record.owner_id,
            owner_username=record.owner_username,
            owner_name=record.owner_name,
            owner_ip=record.owner_ip,
            missing=st is None,
            can_modify=can_mutate(actor, record) if actor is not None else None,
        )

    async def _publish(self, path: str) -> None:
        try:
            stats, storage = await self.dashboard_stats()
            self.notifier.publish_change(path, stats, storage)
        except Exception:
            logger.exception("Could not publish change for %r", path)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    async def list_folder(self, actor: Actor, raw_path: Optional[str]) -> Tuple[str, List[FileView]]:
        logical = self.resolver.sanitize(raw_path)
        records = await self.store.list_folder(logical)
        views = await asyncio.gather(*(self.view(r, actor) for r in records))
        return logical, sorted(views, key=lambda v: (not v.is_directory, v.name.lower()))

    async def open_download(self, record_id: Optional[str]) -> Tuple[Path, FileRecord]:
        record = await self._get(record_id)
        if record.is_directory:
            raise ValidationError("Folders cannot be downloaded")
        try:
            target = self.resolver.record_path(record.path, record.system_name)
        except ValidationError:
            raise NotFound("File not found")
        if not await aiofiles.os.path.isfile(target):
            logger.warning("Download of %s: bytes missing on disk", record.id)
            raise NotFound("File not found")
        return target, record

    async def storage_info(self) -> StorageUsage:
        try:
            usage = await asyncio.to_thread(shutil.disk_usage, self.resolver.root)
        except OSError as exc:
            logger.warning("Disk check failed: %s", exc)
            return StorageUsage()
        return StorageUsage(free=usage.free, total=usage.total, used=usage.total - usage.free)

    async def dashboard_stats(self) -> Tuple[Stats, StorageUsage]:
        stats = await self.store.aggregate_stats(self.settings.recent_count)
        return stats, await self.storage_info()

    # ------------------------------------------------------------------
    # mutations
    # ------------------------------------------------------------------
    async def create_folder(self, actor: Actor, name: Optional[str], raw_path: Optional[str]) -> FileView:
        name = clean_name(name, folder=True)
        logical = self.resolver.sanitize(raw_path)
        target = self.resolver.record_path(logical, name)

        async with self._tree_lock:
            await self._require_folder(logical)
            if await aiofiles.os.path.exists(target):
                raise Conflict("Folder already exists")
            try:
                await aiofiles.os.mkdir(target)
            except FileExistsError:
                raise Conflict("Folder already exists")
            except FileNotFoundError:
                raise NotFound("Folder not found")
            except OSError as exc:
                logger.exception("mkdir %r failed", join_logical(logical, name))
                raise StorageFault() from exc

            with storage_errors("Recording folder"):
                record = await self.store.insert(
                    FileRecord(
                        name=name,
                        system_name=name,
                        size=0,
                        type=FOLDER_TYPE,
                        path=logical,
                        is_directory=True,
                        **owner_fields(actor),
                    )
                )

        logger.info("Folder %r created by %s", record.full_path, actor.username or actor.ip)
        await self._publish(logical)
        return await self.view(record, actor)

    async def upload(self, actor: Actor, raw_path: Optional[str], files: list) -> Tuple[List[FileView], List[dict]]:
        """Store each uploaded part independently.

        Returns the views of stored files and ``{"name", "message"}`` for
        parts that failed; raises when nothing could be stored.
        """
        if not files:
            raise ValidationError("No files uploaded")
        total = sum(declared_size(item) for item in files)
        if total > self.settings.max_upload_bytes:
            raise PayloadTooLarge(
                f"Upload of {total} bytes exceeds the {self.settings.max_upload_bytes} byte limit"
            )

        logical, directory = self.resolver.resolve(raw_path)
        await self._require_folder(logical)
        if not await aiofiles.os.path.isdir(directory):
            raise NotFound("Folder not found")

        uploaded: List[FileView] = []
        failed: List[dict] = []
        first_error: Optional[DriveError] = None
        for item in files:
            try:
                name = upload_basename(item.filename)
                record = await self._store_upload(actor, logical, name, item)
            except PayloadTooLarge:
                raise
            except DriveError as exc:
                failed.append({"name": item.filename or "", "message": exc.message})
                first_error = first_error or exc
                continue
            uploaded.append(await self.view(record, actor))

        if not uploaded:
            raise first_error
        logger.info(
            "%d file(s) uploaded to %r by %s", len(uploaded), logical, actor.username or actor.ip
        )
        await self._publish(logical)
        return uploaded, failed

    async def _store_upload(self, actor: Actor, logical: str, name: str, item) -> FileRecord:
        system_name = f"{uuid.uuid4().hex[:12]}-{name}"
        # outside the tree, so a folder renamed mid-stream cannot strand it
        part = self.settings.staging_dir / f"{system_name}.part"
        limit = self.settings.max_upload_bytes
        size = 0
        placed = False
        try:
            async with aiofiles.open(part, "wb") as out:
                while True:
                    block = await item.read(self.settings.upload_chunk_size)
                    if not block:
                        break
                    size += len(block)
                    if size > limit:
                        raise PayloadTooLarge(f"Upload exceeds the {limit} byte limit")
                    await out.write(block)

            # only complete bytes get a name and a record
            async with self._tree_lock:
                await self._require_folder(logical)
                final = self.resolver.record_path(logical, system_name)
                await asyncio.to_thread(shutil.move, part, final)
                placed = True
                return await self.store.insert(
                    FileRecord(
                        name=name,
                        system_name=system_name,
                        size=size,
                        type=file_type(name),
                        path=logical,
                        is_directory=False,
                        **owner_fields(actor),
                    )
                )
        except OSError as exc:
            logger.exception("Storing upload %r in %r failed", name, logical)
            raise StorageFault(f'Could not store "{name}"') from exc
        finally:
            if not placed:
                part.unlink(missing_ok=True)

    async def delete(self, actor: Actor, record_id: Optional[str]) -> FileRecord:
        async with self._tree_lock:
            record = await self._get(record_id)
            ensure_can_mutate(actor, record, "Delete")
            target = self.resolver.record_path(record.path, record.system_name)

            if record.is_directory:
                try:
                    await asyncio.to_thread(shutil.rmtree, target)
                except FileNotFoundError:
                    logger.warning("Folder %r was already gone from disk", record.full_path)
                except OSError as exc:
                    logger.exception("Removing folder %r failed", record.full_path)
                    raise StorageFault() from exc
                with storage_errors("Removing folder contents from catalog"):
                    removed = await self.store.remove_by_folder_prefix(record.full_path)
                logger.info("Removed %d record(s) under %r", removed, record.full_path)
            else:
                try:
                    await aiofiles.os.remove(target)
                except FileNotFoundError:
                    logger.warning("File %r was already gone from disk", record.full_path)
                except OSError as exc:
                    logger.exception("Removing file %r failed", record.full_path)
                    raise StorageFault() from exc

            with storage_errors("Removing record"):
                await self.store.remove(record.id)

        logger.info("%r deleted by %s", record.full_path, actor.username or actor.ip)
        await self._publish(record.path)
        return record

    async def rename(self, actor: Actor, record_id: Optional[str], new_name: Optional[str]) -> FileView:
        async with self._tree_lock:
            record = await self._get(record_id)
            ensure_can_mutate(actor, record, "Rename")
            new_name = clean_name(new_name, folder=record.is_directory)
            if new_name == record.name:
                return await self.view(record, actor)

            if record.is_directory:
                source = self.resolver.record_path(record.path, record.system_name)
                target = self.resolver.record_path(record.path, new_name)
                if (
                    await aiofiles.os.path.exists(target)
                    or await self.store.find_folder(join_logical(record.path, new_name)) is not None
                ):
                    raise Conflict("A folder with that name already exists")
                try:
                    await aiofiles.os.rename(source, target)
                except FileNotFoundError:
                    raise NotFound("Folder not found")
                except OSError as exc:
                    logger.exception("Renaming folder %r failed", record.full_path)
                    raise StorageFault() from exc

            # files keep their on-disk name, only the display name changes
            with storage_errors("Renaming record"):
                updated = await self.store.rename(record.id, new_name)
            if updated is None:
                raise NotFound("File not found")

        logger.info("%r renamed to %r by %s", record.full_path, new_name, actor.username or actor.ip)
        await self._publish(record.path)
        return await self.view(updated, actor)
