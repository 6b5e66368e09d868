from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from .errors import ResponseParseError


@dataclass(frozen=True)
class User:
    name: str
    mail_address: str

    @classmethod
    def from_payload(cls, raw: Any) -> User | None:
        if not isinstance(raw, dict):
            return None
        return cls(name=_str(raw.get("name")), mail_address=_str(raw.get("mailAddress")))


@dataclass(frozen=True)
class Issue:
    """Subset of a Backlog issue used for display."""

    project_id: int
    summary: str
    description: str
    assignee: User | None = None
    status: str | None = None

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> Issue:
        status = raw.get("status")
        return cls(
            project_id=_int(raw.get("projectId")),
            summary=_str(raw.get("summary")),
            description=_str(raw.get("description")),
            assignee=User.from_payload(raw.get("assignee")),
            status=_str(status.get("name")) if isinstance(status, dict) else None,
        )


@dataclass(frozen=True)
class Comment:
    id: int
    content: str
    created: str
    created_user: User | None = None

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> Comment:
        return cls(
            id=_int(raw.get("id")),
            content=_str(raw.get("content")),
            created=_str(raw.get("created")),
            created_user=User.from_payload(raw.get("createdUser")),
        )


@dataclass(frozen=True)
class ProjectStatus:
    id: int
    project_id: int
    name: str
    color: str
    display_order: int

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> ProjectStatus:
        return cls(
            id=_int(raw.get("id")),
            project_id=_int(raw.get("projectId")),
            name=_str(raw.get("name")),
            color=_str(raw.get("color")),
            display_order=_int(raw.get("displayOrder")),
        )


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    return value if isinstance(value, int) else 0


def _load(data: bytes | str, kind: str) -> Any:
    try:
        return json.loads(data)
    except (TypeError, ValueError) as exc:
        raise ResponseParseError(f"Failed to parse {kind}: {exc}") from exc


def _load_object(data: bytes | str, kind: str) -> dict[str, Any]:
    raw = _load(data, kind)
    if not isinstance(raw, dict):
        raise ResponseParseError(f"Failed to parse {kind}: expected a JSON object")
    return raw


def _load_array(data: bytes | str, kind: str) -> list[dict[str, Any]]:
    raw = _load(data, kind)
    if not isinstance(raw, list):
        raise ResponseParseError(f"Failed to parse {kind}: expected a JSON array")
    return [entry for entry in raw if isinstance(entry, dict)]


def parse_issue(data: bytes | str) -> Issue:
    return Issue.from_payload(_load_object(data, "issue"))


def parse_comment(data: bytes | str) -> Comment:
    return Comment.from_payload(_load_object(data, "comment"))


def parse_comments(data: bytes | str) -> list[Comment]:
    return [Comment.from_payload(entry) for entry in _load_array(data, "comments")]


def parse_project_statuses(data: bytes | str) -> list[ProjectStatus]:
    return [ProjectStatus.from_payload(entry) for entry in _load_array(data, "statuses")]


__all__ = [
    "Comment",
    "Issue",
    "ProjectStatus",
    "User",
    "parse_comment",
    "parse_comments",
    "parse_issue",
    "parse_project_statuses",
]
