"""Records, views and request bodies.

Python code stays snake_case; everything persisted or sent to the browser is
camelCase through ``CamelModel``.
"""
import hashlib
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, field_validator, model_validator
from pydantic.alias_generators import to_camel

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

FOLDER_TYPE = "folder"
ROLE_GUEST = "guest"
ROLE_USER = "user"
ROLE_ADMIN = "admin"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def join_logical(parent: str, name: str) -> str:
    """Full logical path of ``name`` inside ``parent`` ("" is the root)."""
    return f"{parent}/{name}" if parent else name


class CamelModel(BaseModel):
    """Accepts and outputs camelCase."""

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "protected_namespaces": (),
    }

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


# ----------------------------------------------------------------------
# Metadata
# ----------------------------------------------------------------------
class FileRecord(CamelModel):
    """One uploaded file or created folder, as kept in db.json."""

    id: str = ""
    name: str
    system_name: str
    size: int = 0
    type: str = "unknown"
    path: str = ""
    is_directory: bool = False
    owner_id: Optional[str] = None
    owner_username: Optional[str] = None
    owner_name: Optional[str] = None
    owner_ip: Optional[str] = None
    uploaded_at: datetime = EPOCH

    @model_validator(mode="before")
    @classmethod
    def _legacy_system_name(cls, data):
        # records written before on-disk names were tracked
        if isinstance(data, dict) and not (data.get("systemName") or data.get("system_name")):
            data = {**data, "systemName": data.get("name")}
        return data

    @field_validator("uploaded_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    @property
    def full_path(self) -> str:
        return join_logical(self.path, self.name)

    @property
    def has_owner(self) -> bool:
        return bool(self.owner_id or self.owner_username or self.owner_ip)


class FileView(CamelModel):
    """What a client gets to see for a record plus its live disk stat."""

    id: str
    name: str
    type: str
    path: str
    is_directory: bool
    size: int
    uploaded_at: datetime
    modified_at: Optional[datetime] = None
    owner_id: Optional[str] = None
    owner_username: Optional[str] = None
    owner_name: Optional[str] = None
    owner_ip: Optional[str] = None
    missing: bool = False
    can_modify: Optional[bool] = None


class StorageUsage(CamelModel):
    free: int = 0
    total: int = 0
    used: int = 0


class Stats(CamelModel):
    total_files: int = 0
    total_size: int = 0
    count_by_type: Dict[str, int] = {}
    recent: List[FileView] = []


# ----------------------------------------------------------------------
# Actors
# ----------------------------------------------------------------------
class GuestActor(BaseModel):
    """Unauthenticated caller, known only by network address."""

    kind: Literal["guest"] = "guest"
    ip: str
    admin: bool = False

    @property
    def id(self) -> str:
        return "guest-" + hashlib.sha256(self.ip.encode("utf-8")).hexdigest()[:12]

    @property
    def username(self) -> Optional[str]:
        return None

    @property
    def name(self) -> str:
        return f"Guest {self.ip}"

    @property
    def role(self) -> str:
        return ROLE_ADMIN if self.admin else ROLE_GUEST

    @property
    def is_admin(self) -> bool:
        return self.admin

    @property
    def authenticated(self) -> bool:
        return False

    def public(self) -> dict:
        return {"id": self.id, "username": None, "name": self.name, "role": self.role}


class UserActor(BaseModel):
    """Caller carrying a valid signed token."""

    kind: Literal["user"] = "user"
    id: str
    username: str
    name: str
    role: str = ROLE_USER
    ip: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def authenticated(self) -> bool:
        return True

    def public(self) -> dict:
        return {"id": self.id, "username": self.username, "name": self.name, "role": self.role}


Actor = Union[GuestActor, UserActor]


# ----------------------------------------------------------------------
# Request bodies
# ----------------------------------------------------------------------
class CreateFolderRequest(CamelModel):
    name: str = ""
    current_path: str = ""


class RenameRequest(CamelModel):
    new_name: str = ""


class RegisterRequest(CamelModel):
    name: str = ""
    email: str = ""
    username: str = ""
    password: str = ""


class LoginRequest(CamelModel):
    username: str = ""
    password: str = ""
