"""Who may rename or delete a record."""
import logging

from .errors import Forbidden
from .models import Actor, FileRecord, UserActor

logger = logging.getLogger(__name__)


def can_mutate(actor: Actor, record: FileRecord) -> bool:
    """Admin, then owner id, then owner username, then owner address.

    An owner id has to match exactly. The address only counts for records
    with no account owner (guest uploads and legacy records). Records without
    any owner field are admin-only.
    """
    if actor.is_admin:
        return True
    if not record.has_owner:
        return False
    if record.owner_id or record.owner_username:
        if not isinstance(actor, UserActor):
            return False
        if record.owner_id:
            return actor.id == record.owner_id
        return actor.username == record.owner_username
    return actor.ip == record.owner_ip


def ensure_can_mutate(actor: Actor, record: FileRecord, action: str) -> None:
    if not can_mutate(actor, record):
        logger.warning(
            "%s denied: %s (ip %s) on %r owned by %s",
            action,
            actor.username or actor.id,
            actor.ip,
            record.full_path,
            record.owner_username or record.owner_ip or "nobody",
        )
        raise Forbidden("Permission denied: You do not own this file.")


def owner_fields(actor: Actor) -> dict:
    """Ownership captured on a new record under the caller's identity regime."""
    fields = {"owner_ip": actor.ip, "owner_name": actor.name}
    if isinstance(actor, UserActor):
        fields["owner_id"] = actor.id
        fields["owner_username"] = actor.username
    return fields
