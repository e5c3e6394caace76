from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import textwrap
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TaskID, TextColumn

from ._version import __version__
from .cache import clear_cache
from .config import Config, config_path, load_config, save_config
from .exceptions import InstallerFailure, MetadataFetchError, ModstoreError
from .orchestrator import InstallOrchestrator, ModstoreContext
from .packages import PackageManifest
from .profiles import GameDefinitionStore

log = logging.getLogger("modstore")


class ConsoleObserver:
    """Reports install progress on a rich console."""

    def __init__(self, console: Console) -> None:
        self.console = console
        self._progress: Progress | None = None
        self._task: TaskID | None = None

    def fetch_started(self, total: int) -> None:
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(bar_width=30),
            MofNCompleteColumn(),
            console=self.console,
            transient=True,
        )
        self._task = self._progress.add_task("Downloading archives", total=total)
        self._progress.start()

    def fetch_progress(self, completed: int, total: int) -> None:
        if self._progress is None or self._task is None:
            return
        self._progress.update(self._task, completed=completed)
        if completed >= total:
            self._progress.stop()
            self.console.print(f"[dim]{completed}/{total} archives downloaded[/dim]")
            self._progress = None

    def installed(self, manifest: PackageManifest) -> None:
        self._stop_progress()
        self.console.print(f"[green]Installed mod: {manifest.full_name}[/green]")

    def install_failed(self, manifest: PackageManifest, error: InstallerFailure) -> None:
        self._stop_progress()
        self.console.print(f"[red]Failed to install mod: {manifest.full_name} (exit code {error.exit_code})[/red]")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]warning:[/yellow] {message}")

    def close(self) -> None:
        self._stop_progress()

    def _stop_progress(self) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None


def _setup_logging(verbosity: int, console: Console) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False, markup=False)],
        force=True,
    )


def _merge_cfg(base: Config, args: argparse.Namespace) -> Config:
    # Env overrides config; CLI overrides both.
    repository_url = (
        getattr(args, "repository_url", None) or os.getenv("MODSTORE_REPOSITORY_URL") or base.repository_url
    )
    timeout_s = getattr(args, "timeout_s", None) or os.getenv("MODSTORE_TIMEOUT_S") or base.timeout_s
    try:
        timeout_s_f = float(timeout_s)
    except (TypeError, ValueError):
        timeout_s_f = base.timeout_s
    game = getattr(args, "game", None) or os.getenv("MODSTORE_GAME") or base.game
    profile = getattr(args, "profile", None) or os.getenv("MODSTORE_PROFILE") or base.profile
    max_workers = getattr(args, "max_workers", None) or base.max_workers

    return replace(
        base,
        repository_url=repository_url,
        timeout_s=timeout_s_f,
        game=game,
        profile=profile,
        max_workers=max_workers,
    )


def _print_table(rows: list[list[str]]) -> None:
    if not rows:
        return
    widths = [0] * len(rows[0])
    for r in rows:
        for i, c in enumerate(r):
            widths[i] = max(widths[i], len(c))
    for r in rows:
        line = "  ".join(c.ljust(widths[i]) for i, c in enumerate(r))
        print(line.rstrip())


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="modstore",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="Install Thunderstore mod packages and their dependencies into game profiles.",
        epilog=textwrap.dedent(
            """\
            Environment variables:
              MODSTORE_REPOSITORY_URL, MODSTORE_TIMEOUT_S, MODSTORE_GAME, MODSTORE_PROFILE,
              MODSTORE_CONFIG_PATH
            """
        ),
    )

    def _add_runtime_overrides(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--repository-url", help="Package repository base URL")
        parser.add_argument("--timeout-s", type=float, help="HTTP timeout in seconds")
        parser.add_argument("--game", help="Game identifier (see `modstore game list`)")
        parser.add_argument("--profile", help="Profile name (default: Default)")

    p.add_argument("--version", action="version", version=f"modstore {__version__}")
    p.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)")
    p.add_argument("--verbose-errors", action="store_true", help="Print the full error cause chain")

    sub = p.add_subparsers(dest="cmd", required=True)

    # install
    install = sub.add_parser("install", aliases=["i"], help="Install a package and its dependencies")
    _add_runtime_overrides(install)
    install.add_argument("package", help="namespace-name[-version] or a path to a package zip")
    install.add_argument("--namespace", help="Namespace for a local zip whose manifest has none")
    install.add_argument("--max-workers", type=int, help="Concurrent downloads")

    # list
    lst = sub.add_parser("list", aliases=["ls"], help="List installed packages in a profile")
    lst.add_argument("--game", help="Game identifier")
    lst.add_argument("--profile", help="Profile name")
    lst.add_argument("--json", action="store_true", help="Output JSON")

    # game
    game = sub.add_parser("game", help="Manage game definitions")
    game_sub = game.add_subparsers(dest="subcmd", required=True)
    game_add = game_sub.add_parser("add", help="Register a game installation")
    game_add.add_argument("identifier", help="Game identifier, e.g. riskofrain2")
    game_add.add_argument("install_dir", help="Game installation directory")
    game_add.add_argument("--name", help="Display name")
    game_list = game_sub.add_parser("list", help="List registered games")
    game_list.add_argument("--json", action="store_true", help="Output JSON")

    # config
    cfg = sub.add_parser("config", help="Manage local config")
    cfg_sub = cfg.add_subparsers(dest="subcmd", required=True)
    cfg_sub.add_parser("path", help="Print config path")
    cfg_sub.add_parser("show", help="Show config")
    cfg_set = cfg_sub.add_parser("set", help="Set config fields")
    cfg_set.add_argument("--repository-url")
    cfg_set.add_argument("--timeout-s", type=float)
    cfg_set.add_argument("--installer-path")
    cfg_set.add_argument("--installer-timeout-s", type=float)
    cfg_set.add_argument("--max-workers", type=int)
    cfg_set.add_argument("--cache-dir")
    cfg_set.add_argument("--data-dir")
    cfg_set.add_argument("--game")
    cfg_set.add_argument("--profile")

    # cache
    cache = sub.add_parser("cache", help="Manage the archive cache")
    cache_sub = cache.add_subparsers(dest="subcmd", required=True)
    cache_sub.add_parser("path", help="Print cache directory")
    cache_sub.add_parser("clear", help="Delete cached archives")

    return p


def cmd_install(args: argparse.Namespace, console: Console) -> int:
    cfg = _merge_cfg(load_config(), args)
    if not cfg.game:
        raise ModstoreError("No game selected. Pass --game, set MODSTORE_GAME, or `modstore config set --game`.")

    store = GameDefinitionStore.load(cfg.resolved_data_dir())
    game = store.get_game(cfg.game)
    profile = store.get_or_create_profile(game, cfg.profile)

    observer = ConsoleObserver(console)
    with ModstoreContext.from_config(cfg) as context:
        orchestrator = InstallOrchestrator(context, observer=observer)
        try:
            rc = orchestrator.install(args.package, game, profile, namespace_backup=args.namespace)
        finally:
            observer.close()

    if rc == 0:
        store.persist()
    return rc


def cmd_list(args: argparse.Namespace) -> int:
    cfg = _merge_cfg(load_config(), args)
    if not cfg.game:
        raise ModstoreError("No game selected. Pass --game or set MODSTORE_GAME.")
    store = GameDefinitionStore.load(cfg.resolved_data_dir())
    game = store.get_game(cfg.game)
    profile = game.get_profile(cfg.profile)
    mods = profile.installed_mod_versions if profile else {}

    if args.json:
        print(json.dumps({key: mods[key].to_dict() for key in sorted(mods)}, indent=2, sort_keys=True))
        return 0

    rows = [["PACKAGE", "VERSION"]]
    rows.extend([key, mods[key].version_number] for key in sorted(mods))
    _print_table(rows)
    return 0


def cmd_game(args: argparse.Namespace) -> int:
    cfg = load_config()
    store = GameDefinitionStore.load(cfg.resolved_data_dir())
    if args.subcmd == "add":
        install_dir = Path(args.install_dir).expanduser().resolve()
        if not install_dir.is_dir():
            raise ModstoreError(f"Game directory does not exist: {install_dir}")
        game = store.add_game(args.identifier, install_dir, name=args.name)
        path = store.persist()
        print(f"Registered {game.identifier}: {game.install_directory}")
        print(f"Saved: {path}")
        return 0

    if args.subcmd == "list":
        if args.json:
            payload: list[dict[str, Any]] = [
                {
                    "identifier": g.identifier,
                    "name": g.name,
                    "install_directory": str(g.install_directory),
                    "profiles": [p.name for p in g.profiles],
                }
                for g in store.games
            ]
            print(json.dumps(payload, indent=2, sort_keys=True))
            return 0
        rows = [["IDENTIFIER", "NAME", "PROFILES", "DIRECTORY"]]
        for g in store.games:
            rows.append([g.identifier, g.name, ",".join(p.name for p in g.profiles) or "-", str(g.install_directory)])
        _print_table(rows)
        return 0

    raise AssertionError("unreachable")


def cmd_config(args: argparse.Namespace) -> int:
    if args.subcmd == "path":
        print(str(config_path()))
        return 0

    if args.subcmd == "show":
        print(json.dumps(asdict(load_config()), indent=2, sort_keys=True))
        return 0

    if args.subcmd == "set":
        cfg = load_config()
        updates = {
            name: getattr(args, name)
            for name in (
                "repository_url",
                "timeout_s",
                "installer_path",
                "installer_timeout_s",
                "max_workers",
                "cache_dir",
                "data_dir",
                "game",
                "profile",
            )
            if getattr(args, name) is not None
        }
        path = save_config(replace(cfg, **updates))
        print(f"Saved: {path}")
        return 0

    raise AssertionError("unreachable")


def cmd_cache(args: argparse.Namespace) -> int:
    cfg = load_config()
    cache_dir = cfg.resolved_cache_dir()
    if args.subcmd == "path":
        print(str(cache_dir))
        return 0
    if args.subcmd == "clear":
        removed = clear_cache(cache_dir)
        print(f"Removed {removed} cached archives from {cache_dir}")
        return 0
    raise AssertionError("unreachable")


def _format_error(err: BaseException) -> str:
    if isinstance(err, MetadataFetchError) and err.status_code == 404:
        return f"{err} (package or version does not exist)"
    return str(err)


def _print_cause_chain(err: BaseException) -> None:
    print("error_details:", file=sys.stderr)
    cause = err.__cause__ or err.__context__
    depth = 1
    while cause is not None:
        print(f"  cause[{depth}]: {type(cause).__name__}: {_format_error(cause)}", file=sys.stderr)
        cause = cause.__cause__ or cause.__context__
        depth += 1


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    console = Console(stderr=True)
    _setup_logging(args.verbose, console)
    try:
        if args.cmd in ("install", "i"):
            return cmd_install(args, console)
        if args.cmd in ("list", "ls"):
            return cmd_list(args)
        if args.cmd == "game":
            return cmd_game(args)
        if args.cmd == "config":
            return cmd_config(args)
        if args.cmd == "cache":
            return cmd_cache(args)
        raise AssertionError("unreachable")
    except ModstoreError as e:
        print(f"error: {_format_error(e)}", file=sys.stderr)
        if args.verbose_errors:
            _print_cause_chain(e)
        log.debug("Full traceback:", exc_info=True)
        return 1
    except KeyboardInterrupt:
        print("Operation cancelled by user.", file=sys.stderr)
        return 130


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
