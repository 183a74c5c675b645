#!/usr/bin/env python3
"""Operator commands: serve the API, index transcripts, map panes, search."""

import argparse
import asyncio
import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from sessiondeck.config import get_settings
from sessiondeck.db.database import get_engine, init_db
from sessiondeck.models.sessions import Session, SessionFilters
from sessiondeck.services.container import AppServices, build_services

console = Console()


def _session_table(sessions: list[Session], title: str) -> Table:
    table = Table(title=title)
    table.add_column("Slug", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Project")
    table.add_column("Last activity")
    table.add_column("Pane")
    table.add_column("Task", overflow="fold")
    for session in sessions:
        table.add_row(
            session.slug,
            session.status,
            session.project_name or session.project_path,
            session.last_activity.strftime("%Y-%m-%d %H:%M"),
            session.pane_id or "",
            session.detected_task or "",
        )
    return table


async def _with_services(projects_dir: Path | None) -> AppServices:
    get_settings().ensure_data_dir()
    await init_db()
    return build_services(projects_dir=projects_dir)


async def run_index(projects_dir: Path | None) -> int:
    services = await _with_services(projects_dir)
    try:
        indexed = await services.indexer.index_all_sessions()
    finally:
        await get_engine().dispose()
    console.print(f"Indexed [bold]{indexed}[/bold] sessions")
    return 0


async def run_map() -> int:
    services = await _with_services(None)
    try:
        mapping = await services.mapper.map_all_panes()
    finally:
        await get_engine().dispose()
    if not mapping:
        console.print("No tmux panes running an agent were matched to a session")
        return 0
    table = Table(title="Pane mapping")
    table.add_column("Pane", style="cyan")
    table.add_column("Session")
    for pane_id, session_id in sorted(mapping.items()):
        table.add_row(pane_id, session_id)
    console.print(table)
    return 0


async def run_search(query: str) -> int:
    services = await _with_services(None)
    try:
        sessions = await services.repository.search_sessions(query)
    finally:
        await get_engine().dispose()
    console.print(_session_table(sessions, f"Search: {query}"))
    return 0


async def run_list(show_all: bool, days: int | None) -> int:
    services = await _with_services(None)
    try:
        sessions = await services.repository.list_sessions(
            SessionFilters(show_all=show_all, max_age_days=days)
        )
        stats = await services.repository.get_stats()
    finally:
        await get_engine().dispose()
    console.print(_session_table(sessions, "Sessions"))
    console.print(
        f"{stats.total} total, {stats.active} active, {stats.idle} idle, "
        f"{stats.completed} completed"
    )
    return 0


def run_serve(host: str, port: int) -> int:
    import uvicorn

    uvicorn.run("sessiondeck.main:app", host=host, port=port)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Index and track Claude Code sessions.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    index = subparsers.add_parser("index", help="Index every transcript once")
    index.add_argument("--projects-dir", type=Path, help="Override the transcripts root")

    subparsers.add_parser("map", help="Run one pane mapping cycle")

    search = subparsers.add_parser("search", help="Full-text search over sessions")
    search.add_argument("query")

    list_cmd = subparsers.add_parser("list", help="List recent sessions")
    list_cmd.add_argument("--all", action="store_true", dest="show_all", help="Include old ones")
    list_cmd.add_argument("--days", type=int, help="Recent window in days")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, console=Console(stderr=True))],
    )

    if args.command == "serve":
        return run_serve(args.host, args.port)
    if args.command == "index":
        return asyncio.run(run_index(args.projects_dir))
    if args.command == "map":
        return asyncio.run(run_map())
    if args.command == "search":
        return asyncio.run(run_search(args.query))
    return asyncio.run(run_list(args.show_all, args.days))


if __name__ == "__main__":
    raise SystemExit(main())
