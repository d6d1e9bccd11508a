#!/usr/bin/env python3
"""
Plan lumber purchases and cuts with the LumberLogic optimizer.

Usage:
    # Start a problem file and edit it
    python scripts/lumberlogic.py new project.json --name "Garden bench"
    python scripts/lumberlogic.py edit project.json add-cut
    python scripts/lumberlogic.py edit project.json set cut 1 length 30
    python scripts/lumberlogic.py edit project.json remove board 0

    # Optimize (saved to history when logged in)
    python scripts/lumberlogic.py optimize project.json

    # Account and history
    python scripts/lumberlogic.py login
    python scripts/lumberlogic.py callback "http://localhost/?accessToken=...&refreshToken=..."
    python scripts/lumberlogic.py history list --page 2
    python scripts/lumberlogic.py history load <id> --save project.json
    python scripts/lumberlogic.py history delete <id>
    python scripts/lumberlogic.py logout

The backend URL is read from LUMBERLOGIC_API_URL or passed via --api-url.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from api_client import ServiceConfig
from history_manager import HistoryPage
from result_view import format_result_view
from stock_model import BOARD_FIELDS, CUT_FIELDS, Problem
from workspace import Workspace


def read_problem(path: str) -> Problem:
    with open(path, "r", encoding="utf-8") as f:
        return Problem.from_payload(json.load(f))


def write_problem(path: str, problem: Problem) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8") as f:
        json.dump(problem.to_payload(), f, indent=2)


def print_history(page: HistoryPage) -> None:
    if not page.entries:
        print("No saved optimizations.")
    for entry in page.entries:
        cost = f"${entry.total_cost:.2f}" if entry.total_cost is not None else "-"
        print(f"{entry.id}  {entry.created_at or '':<25} {cost:>10}  "
              f"{entry.project_name or 'Untitled'}")
    print(f"Page {page.page} of {page.page_count} ({page.total} total)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Optimize lumber cuts and minimize waste"
    )
    parser.add_argument("--api-url", default=None, help="Backend base URL override")
    parser.add_argument(
        "--timeout", type=float, default=None,
        help="Optimizer timeout in seconds (default: 60)",
    )
    parser.add_argument(
        "--credentials", default=None,
        help="Credential file (default: ~/.lumberlogic/credentials.json)",
    )
    parser.add_argument("-v", "--verbose", action="store_true")

    sub = parser.add_subparsers(dest="command", required=True)

    new = sub.add_parser("new", help="Write the starter problem to a file")
    new.add_argument("problem", help="Problem JSON path")
    new.add_argument("--name", default=None, help="Project name")

    edit = sub.add_parser("edit", help="Edit a problem file")
    edit.add_argument("problem", help="Problem JSON path")
    edit_sub = edit.add_subparsers(dest="action", required=True)
    edit_sub.add_parser("add-cut", help="Append a 2x4x12 cut")
    edit_sub.add_parser("add-board", help="Append a 2x4x96 board at $8")
    remove = edit_sub.add_parser("remove", help="Remove a cut or board")
    remove.add_argument("kind", choices=["cut", "board"])
    remove.add_argument("index", type=int)
    set_field = edit_sub.add_parser("set", help="Set one field of a cut or board")
    set_field.add_argument("kind", choices=["cut", "board"])
    set_field.add_argument("index", type=int)
    set_field.add_argument("field", choices=sorted(set(CUT_FIELDS) | set(BOARD_FIELDS)))
    set_field.add_argument("value")
    rename = edit_sub.add_parser("rename", help="Set the project name")
    rename.add_argument("name")

    optimize = sub.add_parser("optimize", help="Optimize a problem file")
    optimize.add_argument("problem", nargs="?", default=None,
                          help="Problem JSON path (default: starter problem)")

    login = sub.add_parser("login", help="Open the login page")
    login.add_argument("--redirect-uri", default=None)
    callback = sub.add_parser("callback", help="Finish login with the return URL")
    callback.add_argument("url")
    sub.add_parser("logout", help="Forget the saved credential")
    sub.add_parser("whoami", help="Show the logged-in user")

    history = sub.add_parser("history", help="Saved optimizations")
    history_sub = history.add_subparsers(dest="action", required=True)
    listing = history_sub.add_parser("list")
    listing.add_argument("--page", type=int, default=1)
    load = history_sub.add_parser("load")
    load.add_argument("id")
    load.add_argument("--save", default=None, help="Write the loaded problem here")
    delete = history_sub.add_parser("delete")
    delete.add_argument("id")
    delete.add_argument("--page", type=int, default=1, help="Page being viewed")

    return parser


def run_edit(args) -> int:
    problem = read_problem(args.problem)
    if args.action == "add-cut":
        problem.add_cut()
    elif args.action == "add-board":
        problem.add_board()
    elif args.action == "remove":
        if args.kind == "cut":
            problem.remove_cut(args.index)
        else:
            problem.remove_board(args.index)
    elif args.action == "set":
        allowed = CUT_FIELDS if args.kind == "cut" else BOARD_FIELDS
        if args.field not in allowed:
            print(f"Error: a {args.kind} has no '{args.field}' field")
            return 1
        if args.kind == "cut":
            problem.update_cut(args.index, args.field, args.value)
        else:
            problem.update_board(args.index, args.field, args.value)
    elif args.action == "rename":
        problem.project_name = args.name or None
    write_problem(args.problem, problem)
    print(f"{len(problem.cuts)} cuts, {len(problem.boards)} boards")
    if not problem.is_submittable():
        print("Add at least one cut and one board before optimizing.")
    return 0


def main(argv: list[str] | None = None, workspace: Workspace | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command == "new":
        problem = Problem.default()
        problem.project_name = args.name
        write_problem(args.problem, problem)
        print(f"Wrote {args.problem}")
        return 0
    if args.command == "edit":
        return run_edit(args)

    if workspace is None:
        config = ServiceConfig.from_env()
        if args.api_url:
            config.base_url = args.api_url
        if args.timeout:
            config.optimize_timeout_seconds = args.timeout
        if args.credentials:
            config.credentials_path = args.credentials
        workspace = Workspace.create(config)
    workspace.restore_session()

    if args.command == "optimize":
        if args.problem:
            workspace.problem = read_problem(args.problem)
        if not workspace.problem.is_submittable():
            print("Error: add at least one cut and one board before optimizing")
            return 1
        if not workspace.optimize():
            print(f"Error: {workspace.error}")
            return 1
        print(format_result_view(workspace.view))
        if workspace.session.is_authenticated:
            print("\nSaved to your history.")
        return 0

    if args.command == "login":
        url = workspace.begin_login(args.redirect_uri)
        if url is None:
            print(f"Error: {workspace.error}")
            return 1
        print(f"Log in at: {url}")
        return 0
    if args.command == "callback":
        cleaned = workspace.complete_login(args.url)
        if not workspace.session.is_authenticated:
            print("Login failed.")
            return 1
        print(f"Logged in as {workspace.session.identity.name}")
        if cleaned:
            print(f"Continue at: {cleaned}")
        return 0
    if args.command == "logout":
        workspace.logout()
        print("Logged out.")
        return 0
    if args.command == "whoami":
        identity = workspace.session.identity
        print(identity.name if identity else "Not logged in.")
        return 0

    if args.command == "history":
        if args.action == "list":
            page = workspace.open_history(args.page)
        elif args.action == "load":
            entry = workspace.load_history_entry(args.id)
            if entry is None:
                print(f"Error: {workspace.error}")
                return 1
            if args.save:
                write_problem(args.save, workspace.problem)
                print(f"Wrote {args.save}")
            if workspace.view is not None:
                print(format_result_view(workspace.view))
            elif workspace.error:
                print(f"Error: {workspace.error}")
                return 1
            return 0
        else:
            workspace.open_history(args.page)
            page = workspace.delete_history_entry(args.id)
        if page is None:
            print(f"Error: {workspace.error}")
            return 1
        print_history(page)
        return 0

    parser.error(f"unknown command {args.command}")
    return 2


if __name__ == "__main__":
    sys.exit(main())
