"""Whole-document JSON persistence shared by the metadata and user stores."""
import json
import logging
import os
from pathlib import Path
from typing import List

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)


async def read_array(path: Path, legacy_key: str = "") -> List[dict]:
    """Return the JSON array stored at ``path``.

    A missing or corrupt document reads as empty. ``legacy_key`` accepts an
    old ``{"<key>": [...]}`` wrapper.
    """
    if not await aiofiles.os.path.isfile(path):
        return []
    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            data = json.loads(await f.read())
    except (OSError, ValueError) as exc:
        logger.warning("Could not read %s, treating as empty: %s", path.name, exc)
        return []
    if legacy_key and isinstance(data, dict):
        data = data.get(legacy_key, [])
    if not isinstance(data, list):
        logger.warning("%s does not hold a list, treating as empty", path.name)
        return []
    return [item for item in data if isinstance(item, dict)]


async def write_array(path: Path, items: List[dict]) -> None:
    """Rewrite the whole document; readers never see a half-written file."""
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    async with aiofiles.open(tmp, "w", encoding="utf-8") as f:
        await f.write(json.dumps(items, indent=2))
    await aiofiles.os.replace(tmp, path)
