"""bgl CLI.

Subcommands:
  auth login [SPACE]          -> OAuth 2.0 login via the browser
  auth logout                 -> forget stored tokens
  auth refresh                -> force a token refresh
  auth status                 -> show stored login state
  issue view KEY              -> show an issue
  issue status KEY STATUS_ID  -> change an issue's status
  comment list KEY            -> list an issue's comments
  comment view KEY ID         -> show one comment
  comment add KEY             -> add a comment
  status list PROJECT         -> list a project's statuses

Every read command accepts ``--raw`` to print the API's JSON instead of
rendered Markdown.
"""

from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from bgl import __version__
from bgl.errors import UsageError
from bgl.formatting import (
    format_comment_markdown,
    format_comments_markdown,
    format_issue_markdown,
    format_statuses_markdown,
    pretty_json,
    render_markdown,
)
from bgl.logging import configure_logging
from bgl.models import parse_comment, parse_comments, parse_issue, parse_project_statuses
from bgl.oauth import logout, validate_space
from bgl.runtime import Services, execute_command, prepare_services
from bgl.ux import (
    confirm,
    print_info,
    print_success,
    print_summary_box,
    print_warning,
    prompt_multiline,
    prompt_text,
    supports_color,
    waiting,
)

RAW_HELP = "Print the raw JSON response"
_MAX_HELP_WIDTH = 100


class _HelpFormatter(argparse.HelpFormatter):
    def __init__(self, prog: str) -> None:
        super().__init__(prog, max_help_position=30, width=_MAX_HELP_WIDTH)


class _FormatterArgumentParser(argparse.ArgumentParser):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("formatter_class", _HelpFormatter)
        super().__init__(*args, **kwargs)


def _add_group(
    sub: Any, name: str, help_text: str
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    group = sub.add_parser(name, help=help_text)
    return group.add_subparsers(
        dest="action",
        required=True,
        parser_class=_FormatterArgumentParser,
        metavar="<action>",
    )


def _build_parser() -> argparse.ArgumentParser:
    """Construct top-level CLI parser with command groups."""
    p = _FormatterArgumentParser(prog="bgl", description="A command line tool for Backlog")
    p.add_argument("--version", action="version", version=f"bgl {__version__}")
    p.add_argument(
        "--debug",
        action="store_true",
        help="Verbose logging to stderr (env: BGL_LOG_LEVEL=DEBUG)",
    )
    sub = p.add_subparsers(
        dest="cmd",
        required=True,
        parser_class=_FormatterArgumentParser,
        metavar="<command>",
    )

    auth = _add_group(sub, "auth", "Authenticate with a Backlog space")
    login = auth.add_parser("login", help="Log in through the browser (OAuth 2.0)")
    login.add_argument("space", nargs="?", help="Space domain, e.g. myspace.backlog.com")
    login.add_argument(
        "--no-browser",
        action="store_true",
        help="Print the authorization URL without opening a browser",
    )
    auth.add_parser("logout", help="Remove stored access and refresh tokens")
    auth.add_parser("refresh", help="Refresh the access token now")
    auth.add_parser("status", help="Show the stored login state")

    issue = _add_group(sub, "issue", "Work with issues")
    iv = issue.add_parser("view", help="Show an issue")
    iv.add_argument("key", help="Issue key or id (e.g. PROJ-123)")
    iv.add_argument("--raw", action="store_true", help=RAW_HELP)
    ist = issue.add_parser("status", help="Change the status of an issue")
    ist.add_argument("key", help="Issue key or id")
    ist.add_argument("status_id", help="Target status id (see 'bgl status list')")
    ist.add_argument("--raw", action="store_true", help=RAW_HELP)
    ist.add_argument("-y", "--yes", action="store_true", help="Skip confirmation")

    comment = _add_group(sub, "comment", "Work with issue comments")
    cl = comment.add_parser("list", help="List comments of an issue")
    cl.add_argument("key", help="Issue key or id")
    cl.add_argument("--raw", action="store_true", help=RAW_HELP)
    cv = comment.add_parser("view", help="Show one comment")
    cv.add_argument("key", help="Issue key or id")
    cv.add_argument("comment_id", help="Comment id")
    cv.add_argument("--raw", action="store_true", help=RAW_HELP)
    ca = comment.add_parser("add", help="Add a comment to an issue")
    ca.add_argument("key", help="Issue key or id")
    ca.add_argument("-m", "--message", help="Comment content (prompted for when omitted)")
    ca.add_argument("--raw", action="store_true", help=RAW_HELP)
    ca.add_argument("-y", "--yes", action="store_true", help="Skip confirmation")

    status = _add_group(sub, "status", "Work with project statuses")
    sl = status.add_parser("list", help="List the statuses of a project")
    sl.add_argument("project", help="Project key or id")
    sl.add_argument("--raw", action="store_true", help=RAW_HELP)

    return p


def _emit_markdown(markdown: str) -> None:
    sys.stdout.write(render_markdown(markdown, color=supports_color(sys.stdout)))


def _emit_raw(body: bytes) -> None:
    print(pretty_json(body))


# ---- auth ----------------------------------------------------------------------
def _cmd_auth_login(services: Services, args: argparse.Namespace) -> int:
    space = args.space
    if not space:
        space = prompt_text(
            "Enter your Backlog space",
            placeholder="myspace.backlog.com",
            validate=validate_space,
        )
    kwargs: dict[str, Any] = {
        "notify": print_info,
        "warn": print_warning,
        "waiting": lambda: waiting("Waiting for authentication..."),
    }
    if args.no_browser:
        kwargs["browser_opener"] = lambda url: False
    flow = services.oauth_flow(**kwargs)
    flow.login(space)
    print_success("Login successful! Tokens saved to config.")
    return 0


def _cmd_auth_logout(services: Services, args: argparse.Namespace) -> int:
    logout(services.store)
    print_success("Logged out successfully.")
    return 0


def _cmd_auth_refresh(services: Services, args: argparse.Namespace) -> int:
    services.refresher().refresh()
    print_success("Access token refreshed.")
    return 0


def _format_expiry(expires_at: int) -> str:
    if expires_at <= 0:
        return "unknown"
    moment = datetime.fromtimestamp(expires_at / 1000, tz=timezone.utc)
    return moment.isoformat(timespec="seconds")


def _cmd_auth_status(services: Services, args: argparse.Namespace) -> int:
    credential = services.store.load()
    items = [
        ("Space", credential.space or "(none)"),
        ("Logged in", "yes" if credential.is_authenticated else "no"),
        ("Expires at", _format_expiry(credential.expires_at)),
        ("Expired", "yes" if credential.is_expired() else "no"),
        ("Config", str(services.store.path)),
    ]
    print_summary_box("bgl auth status", items)
    return 0 if credential.is_authenticated else 1


# ---- issues --------------------------------------------------------------------
def _cmd_issue_view(services: Services, args: argparse.Namespace) -> int:
    body = services.client().get_issue(args.key)
    if args.raw:
        _emit_raw(body)
        return 0
    _emit_markdown(format_issue_markdown(parse_issue(body)))
    return 0


def _cmd_issue_status(services: Services, args: argparse.Namespace) -> int:
    if not args.yes and not confirm(f"Change status of {args.key} to {args.status_id}?"):
        print("Cancelled.")
        return 0
    client = services.client()
    body = client.update_issue_status(args.key, args.status_id)
    if args.raw:
        _emit_raw(body)
        return 0
    issue = parse_issue(body)
    print_success(f"Status of {args.key} is now {issue.status or args.status_id}.")
    return 0


# ---- comments ------------------------------------------------------------------
def _cmd_comment_list(services: Services, args: argparse.Namespace) -> int:
    body = services.client().get_comments(args.key)
    if args.raw:
        _emit_raw(body)
        return 0
    comments = parse_comments(body)
    if not comments:
        print("No comments found.")
        return 0
    _emit_markdown(format_comments_markdown(comments))
    return 0


def _cmd_comment_view(services: Services, args: argparse.Namespace) -> int:
    body = services.client().get_comment(args.key, args.comment_id)
    if args.raw:
        _emit_raw(body)
        return 0
    _emit_markdown(format_comment_markdown(parse_comment(body)))
    return 0


def _read_comment_content(args: argparse.Namespace) -> str:
    if args.message is not None:
        content = args.message
    else:
        content = prompt_multiline("Comment")
    if not content.strip():
        raise UsageError("Comment content cannot be empty")
    return content


def _cmd_comment_add(services: Services, args: argparse.Namespace) -> int:
    content = _read_comment_content(args)
    if not args.yes and not confirm(f"Add comment to {args.key}?\n{content}\n"):
        print("Cancelled.")
        return 0
    client = services.client()
    body = client.add_comment(args.key, content)
    if args.raw:
        _emit_raw(body)
        return 0
    created = parse_comment(body)
    print_success("Comment added successfully!")
    print(f"URL: {client.comment_url(args.key, created.id)}")
    return 0


# ---- statuses ------------------------------------------------------------------
def _cmd_status_list(services: Services, args: argparse.Namespace) -> int:
    body = services.client().get_project_statuses(args.project)
    if args.raw:
        _emit_raw(body)
        return 0
    _emit_markdown(format_statuses_markdown(parse_project_statuses(body)))
    return 0


_Handler = Callable[[Services, argparse.Namespace], int]

_HANDLERS: dict[tuple[str, str], _Handler] = {
    ("auth", "login"): _cmd_auth_login,
    ("auth", "logout"): _cmd_auth_logout,
    ("auth", "refresh"): _cmd_auth_refresh,
    ("auth", "status"): _cmd_auth_status,
    ("issue", "view"): _cmd_issue_view,
    ("issue", "status"): _cmd_issue_status,
    ("comment", "list"): _cmd_comment_list,
    ("comment", "view"): _cmd_comment_view,
    ("comment", "add"): _cmd_comment_add,
    ("status", "list"): _cmd_status_list,
}


def _configure_logging_from_env(debug: bool) -> None:
    level = "DEBUG" if debug else os.environ.get("BGL_LOG_LEVEL", "WARNING")
    configure_logging(json_logging=os.environ.get("BGL_LOG_JSON") == "1", level=level)


def main(argv: list[str] | None = None, *, services: Services | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging_from_env(args.debug)
    handler = _HANDLERS.get((args.cmd, args.action))
    if handler is None:  # pragma: no cover - argparse enforces valid choices
        parser.print_help()
        return 1
    command = f"{args.cmd}_{args.action}"

    def _run() -> int:
        active = services if services is not None else prepare_services()
        return handler(active, args)

    return execute_command(_run, command)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())


__all__ = ["main"]
