from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table
from loguru import logger

from novel_reader.catalog.service import CatalogService, Novel
from novel_reader.config import load_config
from novel_reader.config.loader import masked_env_snapshot
from novel_reader.reader.service import ReaderService
from novel_reader.reader.types import ReaderState, SessionSnapshot
from novel_reader.utils.logging import setup_logging

console = Console()

_STATE_STYLES = {
    ReaderState.LOADING: "cyan",
    ReaderState.RETRYING: "yellow",
    ReaderState.SUCCESS: "green",
    ReaderState.FINAL_FAILURE: "bold red",
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="novel-reader")
    parser.add_argument("--config", type=Path, default=None, help="Path to custom config YAML")
    parser.add_argument("--profile", type=str, default=None, help="Config profile name")
    parser.add_argument("--log-level", type=str, default=None, help="Override log level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("config", help="Validate and print effective config")

    read_parser = subparsers.add_parser("read", help="Generate and read chapters of a work")
    read_parser.add_argument("--title", type=str, required=True, help="Work title")
    read_parser.add_argument("--chapter", type=int, default=0, help="Zero-based chapter index to open")
    read_parser.add_argument("--source", type=str, default=None, help="Source label shown before any fallback")
    read_parser.add_argument("--count", type=int, default=1, help="Number of consecutive chapters to read")
    read_parser.add_argument("--preload-ahead", type=int, default=None, help="Chapters to preload after the open one")
    read_parser.add_argument("--workers", type=int, default=None, help="Preload worker pool size")

    search_parser = subparsers.add_parser("search", help="Search works by keyword")
    search_parser.add_argument("--query", type=str, required=True, help="Search keywords")

    rankings_parser = subparsers.add_parser("rankings", help="Show top works of a genre")
    rankings_parser.add_argument("--category", choices=["Urban", "Historical"], default="Urban", help="Genre")

    return parser


def _build_overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    app_overrides: dict[str, Any] = {}
    if args.log_level:
        app_overrides["log_level"] = args.log_level
    if app_overrides:
        overrides["app"] = app_overrides

    if getattr(args, "preload_ahead", None) is not None:
        overrides["reader"] = {"preload_ahead": args.preload_ahead}
    if getattr(args, "workers", None) is not None:
        overrides["preload"] = {"workers": args.workers}
    return overrides


def _print_config(config) -> None:
    env_snapshot = masked_env_snapshot(config)
    console.print(Panel(Pretty(config.model_dump(mode="json")), title="Effective Config"))
    console.print(Panel(Pretty(env_snapshot), title="Env Snapshot"))


def _print_transition(snapshot: SessionSnapshot) -> None:
    style = _STATE_STYLES.get(snapshot.state, "white")
    console.print(
        f"[{style}]{snapshot.key}[/] state={snapshot.state.value} "
        f"attempt={snapshot.attempt_count} source={snapshot.label}"
    )


def _print_novels(title: str, novels: list[Novel]) -> None:
    if not novels:
        console.print(Panel("No results.", title=title))
        return
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("#")
    table.add_column("Title")
    table.add_column("Author")
    table.add_column("Category")
    table.add_column("Status")
    table.add_column("Rating")
    table.add_column("Tags")
    for idx, novel in enumerate(novels, start=1):
        table.add_row(
            str(idx),
            novel.title,
            novel.author,
            novel.category,
            novel.status,
            f"{novel.rating:.1f}",
            ", ".join(novel.tags),
        )
    console.print(table)


async def _read(config, args: argparse.Namespace) -> None:
    async with ReaderService(config) as reader:
        reader.subscribe(_print_transition)
        for step in range(max(1, args.count)):
            if step == 0:
                snapshot = await reader.read(args.title, args.chapter, args.source)
            else:
                snapshot = await reader.wait(reader.next_chapter())

            if snapshot.state is not ReaderState.SUCCESS or snapshot.payload is None:
                console.print(
                    Panel(
                        f"{snapshot.error or 'Chapter unavailable'}\nRun the command again to restart.",
                        title="加载失败",
                        style="red",
                    )
                )
                break
            console.print(Panel(snapshot.payload.body, title=snapshot.payload.title))

        stats = reader.coordinator.stats
        table = Table(title="Reader Summary", show_header=True, header_style="bold")
        table.add_column("Metric")
        table.add_column("Value")
        table.add_row("Chapters cached", str(len(reader.coordinator.cache)))
        table.add_row("Cache hits", str(reader.coordinator.cache.hits))
        table.add_row("Generator calls", str(stats.generator_calls))
        table.add_row("Generator failures", str(stats.generator_failures))
        table.add_row("Rejected (too short)", str(stats.validation_failures))
        table.add_row("Joined requests", str(stats.joined_requests))
        table.add_row("Preloads completed/failed", f"{reader.preloader.completed}/{reader.preloader.failed}")
        console.print(table)


async def _main_async() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    overrides = _build_overrides(args)
    config = load_config(
        config_path=args.config,
        profile=args.profile,
        overrides=overrides,
    )

    setup_logging(config.app.log_level)
    logger.info("Loaded configuration")

    if args.command == "config":
        _print_config(config)
        return

    if args.command == "read":
        await _read(config, args)
        return

    if args.command == "search":
        novels = await CatalogService(config).search_novels(args.query)
        _print_novels(f"Search: {args.query}", novels)
        return

    if args.command == "rankings":
        novels = await CatalogService(config).get_rankings(args.category)
        _print_novels(f"Rankings: {args.category}", novels)
        return


def main() -> None:
    asyncio.run(_main_async())


if __name__ == "__main__":
    main()
