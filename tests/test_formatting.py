from __future__ import annotations

import json

import pytest

from bgl import formatting
from bgl.errors import ResponseParseError
from bgl.formatting import (
    COMMENT_SEPARATOR,
    format_comment_markdown,
    format_comments_markdown,
    format_issue_markdown,
    format_statuses_markdown,
    pretty_json,
    render_markdown,
)
from bgl.models import (
    Comment,
    Issue,
    User,
    parse_comment,
    parse_comments,
    parse_issue,
    parse_project_statuses,
)

ISSUE_PAYLOAD = {
    "id": 1,
    "projectId": 42,
    "summary": "Login button broken",
    "description": "Clicking does nothing.",
    "status": {"id": 2, "name": "In Progress"},
    "assignee": {"id": 5, "name": "Kim", "mailAddress": "kim@example.com"},
}


def test_parse_issue_maps_backlog_fields() -> None:
    issue = parse_issue(json.dumps(ISSUE_PAYLOAD).encode())

    assert issue == Issue(
        project_id=42,
        summary="Login button broken",
        description="Clicking does nothing.",
        assignee=User(name="Kim", mail_address="kim@example.com"),
        status="In Progress",
    )


def test_parse_issue_tolerates_null_fields() -> None:
    issue = parse_issue(b'{"projectId": 1, "summary": "s", "description": null, "assignee": null}')

    assert issue.description == ""
    assert issue.assignee is None
    assert issue.status is None


@pytest.mark.parametrize("parser", [parse_issue, parse_comment])
def test_object_parsers_reject_non_objects(parser) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(ResponseParseError):
        parser(b"[]")
    with pytest.raises(ResponseParseError):
        parser(b"<html>")


def test_list_parsers_reject_objects() -> None:
    with pytest.raises(ResponseParseError):
        parse_comments(b'{"id": 1}')
    with pytest.raises(ResponseParseError):
        parse_project_statuses(b"nope")


def test_parse_project_statuses() -> None:
    statuses = parse_project_statuses(
        b'[{"id": 1, "projectId": 9, "name": "Open", "color": "#ed8077", "displayOrder": 1000},'
        b' {"id": 4, "projectId": 9, "name": "Closed", "color": "#b0be3c", "displayOrder": 4000}]'
    )

    assert [(s.id, s.name) for s in statuses] == [(1, "Open"), (4, "Closed")]


def test_issue_markdown_with_assignee() -> None:
    text = format_issue_markdown(parse_issue(json.dumps(ISSUE_PAYLOAD)))

    assert "## Metadata" in text
    assert "- Project ID: 42" in text
    assert "- Status: In Progress" in text
    assert "- Assignee: Kim`<kim@example.com>`" in text
    assert "## Summary\n\nLogin button broken" in text
    assert text.rstrip().endswith("Clicking does nothing.")


def test_issue_markdown_without_assignee() -> None:
    text = format_issue_markdown(Issue(project_id=1, summary="s", description=""))

    assert "- Assignee: (unassigned)" in text
    assert "(no description)" in text


def test_comment_markdown() -> None:
    comment = Comment(id=7, content="Looks good", created="2024-01-02T03:04:05Z", created_user=User("Ana", "ana@x.io"))

    text = format_comment_markdown(comment)

    assert "**Comment Id:** 7" in text
    assert "**User:** Ana`<ana@x.io>`" in text
    assert "**Datetime:** 2024-01-02T03:04:05Z" in text
    assert text.endswith("Looks good\n")


def test_comments_are_separated_by_rule() -> None:
    comments = parse_comments(b'[{"id": 1, "content": "a"}, {"id": 2, "content": "b"}]')

    text = format_comments_markdown(comments)

    assert text.count(COMMENT_SEPARATOR) == 1
    assert format_comments_markdown([]) == ""


def test_statuses_markdown() -> None:
    statuses = parse_project_statuses(b'[{"id": 1, "name": "Open"}, {"id": 3, "name": "Resolved"}]')

    assert format_statuses_markdown(statuses) == "## Status\n- Open (id: 1)\n- Resolved (id: 3)\n"


def test_pretty_json_indents_and_passes_through_non_json() -> None:
    assert pretty_json(b'{"a":1}') == '{\n  "a": 1\n}'
    assert pretty_json(b"plain text") == "plain text"


def test_render_markdown_without_color_has_no_escape_codes() -> None:
    out = render_markdown("# Title\n\nbody", color=False)

    assert "Title" in out
    assert "\x1b[" not in out


def test_render_markdown_falls_back_to_source(monkeypatch: pytest.MonkeyPatch) -> None:
    def _boom(markdown: str) -> None:
        raise ValueError("renderer unavailable")

    monkeypatch.setattr(formatting, "Markdown", _boom)

    assert render_markdown("**raw**") == "**raw**"
