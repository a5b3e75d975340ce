"""Data models for notes and branches as served by ETAPI."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .errors import ValidationError

ENTITY_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_]{4,32}$")

LOCAL_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S.%f%z"  # 2024-01-31 18:04:05.123+0100
UTC_DATETIME_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\.\d{3}Z$")


def validate_entity_id(value: str, field_name: str = "noteId") -> str:
    """Return `value` unchanged if it is a well-formed entity id."""
    if not isinstance(value, str) or not ENTITY_ID_PATTERN.match(value):
        raise ValidationError(
            f"{field_name} must be 4-32 letters, digits or underscores (got {value!r})",
            field=field_name,
        )
    return value


def parse_local_datetime(value: str) -> datetime:
    """Parse an ETAPI LocalDateTime (``YYYY-MM-DD HH:mm:ss.SSS±HHMM``)."""
    try:
        return datetime.strptime(value, LOCAL_DATETIME_FORMAT)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid date: {value!r}", field="date") from e


def parse_utc_datetime(value: str) -> datetime:
    """Parse an ETAPI UtcDateTime (``YYYY-MM-DD HH:mm:ss.SSSZ``)."""
    if not isinstance(value, str) or not UTC_DATETIME_PATTERN.match(value):
        raise ValidationError(f"Invalid UTC date: {value!r}", field="utcDate")
    return datetime.strptime(value[:-1] + "+0000", LOCAL_DATETIME_FORMAT)


@dataclass(frozen=True)
class Note:
    """Immutable snapshot of a note as returned by one fetch."""

    note_id: str
    title: str
    type: str = "text"  # text, code, book, file, image, ...
    mime: str = ""
    is_protected: bool = False
    parent_note_ids: tuple[str, ...] = ()
    child_note_ids: tuple[str, ...] = ()
    parent_branch_ids: tuple[str, ...] = ()
    child_branch_ids: tuple[str, ...] = ()
    date_created: str = ""
    date_modified: str = ""
    utc_date_created: str = ""
    utc_date_modified: str = ""

    @property
    def has_children(self) -> bool:
        return bool(self.child_note_ids)

    def branch_id_under(self, parent_id: str) -> str | None:
        """Branch linking this note to `parent_id`, if the server listed it."""
        candidate = f"{parent_id}_{self.note_id}"
        if candidate in self.parent_branch_ids:
            return candidate
        return None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Note:
        """Build from an ETAPI note payload (camelCase keys)."""
        if "noteId" not in data:
            raise ValidationError("Note payload has no noteId", field="noteId")
        return cls(
            note_id=data["noteId"],
            title=data.get("title") or "",
            type=data.get("type") or "text",
            mime=data.get("mime") or "",
            is_protected=bool(data.get("isProtected", False)),
            parent_note_ids=tuple(data.get("parentNoteIds") or ()),
            child_note_ids=tuple(data.get("childNoteIds") or ()),
            parent_branch_ids=tuple(data.get("parentBranchIds") or ()),
            child_branch_ids=tuple(data.get("childBranchIds") or ()),
            date_created=data.get("dateCreated") or "",
            date_modified=data.get("dateModified") or "",
            utc_date_created=data.get("utcDateCreated") or "",
            utc_date_modified=data.get("utcDateModified") or "",
        )


@dataclass(frozen=True)
class Branch:
    """Placement of a note under a parent, with tree-expansion metadata."""

    branch_id: str
    note_id: str
    parent_note_id: str
    prefix: str = ""
    note_position: int = 0
    is_expanded: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Branch:
        return cls(
            branch_id=data["branchId"],
            note_id=data.get("noteId") or "",
            parent_note_id=data.get("parentNoteId") or "",
            prefix=data.get("prefix") or "",
            note_position=int(data.get("notePosition") or 0),
            is_expanded=bool(data.get("isExpanded", False)),
        )


@dataclass(frozen=True)
class SearchHit:
    """One row of a server-side search, before resolution to a Note."""

    note_id: str
    title: str
    score: float = 1.0  # server relevance; ETAPI omits it for plain searches
    position: int = 0  # index in the server's response


@dataclass(frozen=True)
class AppInfo:
    """Subset of /app-info used to confirm the connection."""

    app_version: str = ""
    db_version: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AppInfo:
        return cls(
            app_version=str(data.get("appVersion") or ""),
            db_version=int(data.get("dbVersion") or 0),
            extra={k: v for k, v in data.items() if k not in {"appVersion", "dbVersion"}},
        )
