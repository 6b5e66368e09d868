"""Markdown views of Backlog payloads and their terminal rendering."""

from __future__ import annotations

import json
from collections.abc import Sequence
from io import StringIO

from rich.console import Console
from rich.markdown import Markdown

from .logging import get_logger
from .models import Comment, Issue, ProjectStatus

WORD_WRAP = 100
COMMENT_SEPARATOR = "\n---\n\n"


def format_issue_markdown(issue: Issue) -> str:
    lines = ["## Metadata", f"- Project ID: {issue.project_id}"]
    lines.append(f"- Status: {issue.status}" if issue.status else "- Status: (unknown)")
    if issue.assignee is not None:
        lines.append(f"- Assignee: {issue.assignee.name}`<{issue.assignee.mail_address}>`")
    else:
        lines.append("- Assignee: (unassigned)")
    lines.append("")
    lines.append(f"## Summary\n\n{issue.summary}\n")
    lines.append("## Description\n")
    lines.append(issue.description or "(no description)")
    return "\n".join(lines) + "\n"


def format_comment_markdown(comment: Comment) -> str:
    if comment.created_user is not None:
        user = f"{comment.created_user.name}`<{comment.created_user.mail_address}>`"
    else:
        user = "(unknown)"
    return (
        f"**Comment Id:** {comment.id}\n\n"
        f"**User:** {user}\n\n"
        f"**Datetime:** {comment.created}\n\n"
        f"**Content:**\n{comment.content or '(no content)'}\n"
    )


def format_comments_markdown(comments: Sequence[Comment]) -> str:
    return COMMENT_SEPARATOR.join(format_comment_markdown(c) for c in comments)


def format_statuses_markdown(statuses: Sequence[ProjectStatus]) -> str:
    lines = ["## Status"]
    lines.extend(f"- {status.name} (id: {status.id})" for status in statuses)
    return "\n".join(lines) + "\n"


def pretty_json(body: bytes | str) -> str:
    """Indent a JSON body; anything that is not JSON is returned verbatim."""
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    try:
        parsed = json.loads(text)
    except ValueError:
        return text
    return json.dumps(parsed, indent=2, ensure_ascii=False)


def render_markdown(markdown: str, *, color: bool = True, width: int = WORD_WRAP) -> str:
    """Render Markdown for the terminal, falling back to the source text."""
    try:
        buffer = StringIO()
        console = Console(
            file=buffer,
            force_terminal=color,
            no_color=not color,
            width=width,
        )
        console.print(Markdown(markdown))
        return buffer.getvalue()
    except Exception as exc:  # noqa: BLE001 - plain text is always acceptable
        get_logger().debug(f"markdown rendering failed, using plain text: {exc}")
        return markdown


__all__ = [
    "format_comment_markdown",
    "format_comments_markdown",
    "format_issue_markdown",
    "format_statuses_markdown",
    "pretty_json",
    "render_markdown",
]
