"""Logical path sanitizing and mapping onto the storage root."""
from pathlib import Path, PurePosixPath
from typing import Optional, Tuple

from .errors import ValidationError

FORBIDDEN_NAME_CHARS = ("/", "\\", "\x00")


def clean_name(raw: Optional[str], folder: bool = False) -> str:
    """Validate a single file or folder name supplied by a client."""
    name = (raw or "").strip()
    if not name:
        raise ValidationError("Name is required")
    if name in (".", "..") or any(c in name for c in FORBIDDEN_NAME_CHARS):
        raise ValidationError(f'Invalid name "{name}"')
    # folder names become path segments and ".." never survives sanitize()
    if folder and ".." in name:
        raise ValidationError(f'Invalid folder name "{name}"')
    return name


def upload_basename(filename: Optional[str]) -> str:
    """Browsers may send a relative path; only the last segment counts."""
    return clean_name(PurePosixPath((filename or "").replace("\\", "/")).name)


def file_type(name: str) -> str:
    return PurePosixPath(name).suffix[1:].lower() or "unknown"


class PathResolver:
    """Maps client-supplied logical folder paths onto the storage root."""

    def __init__(self, root: Path):
        self.root = Path(root).resolve()

    @staticmethod
    def sanitize(raw: Optional[str]) -> str:
        """Strip every ".." and normalise to "seg/seg" ("" is the root)."""
        if not raw:
            return ""
        clean = raw.replace("\\", "/").replace("\x00", "").replace("..", "")
        return "/".join(p for p in clean.split("/") if p and p != ".")

    def physical(self, logical: str) -> Path:
        target = (self.root / logical).resolve() if logical else self.root
        try:
            target.relative_to(self.root)
        except ValueError:
            raise ValidationError("Access denied: path outside storage")
        return target

    def resolve(self, raw: Optional[str]) -> Tuple[str, Path]:
        logical = self.sanitize(raw)
        return logical, self.physical(logical)

    def record_path(self, parent: str, system_name: str) -> Path:
        """Physical location of a record's bytes or directory."""
        target = self.physical(f"{parent}/{system_name}" if parent else system_name)
        if target.parent != self.physical(parent):
            raise ValidationError("Invalid stored name")
        return target
