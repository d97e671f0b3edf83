"""Command-line interface for listing and removing Windows user profiles."""

from __future__ import annotations
import argparse
import logging
import sys
from typing import Sequence

from profilesweep.application import build_orchestrator, load_sweep_config
from profilesweep.config import ConfigError
from profilesweep.orchestrator import Orchestrator
from profilesweep.preconditions import PreconditionError
from profilesweep.report import Report, render_profiles, render_results

logger = logging.getLogger("profilesweep.main")

_KNOWN_COMMANDS = {"list", "delete", "serve"}


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid integer: {raw!r}") from exc
    if value < 1:
        raise argparse.ArgumentTypeError("must be at least 1")
    return value


def _add_common_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the host inventory YAML file (default: $PROFILESWEEP_CONFIG or config/hosts.yaml)",
    )
    parser.add_argument(
        "--max-concurrency",
        type=_positive_int,
        default=None,
        help="Maximum number of hosts or profiles processed at once (default: 50)",
    )


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Inventory and remove Windows user profiles")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="list")

    list_parser = subparsers.add_parser("list", help="List user profiles on one or more computers")
    list_parser.add_argument("targets", nargs="*", default=[], help="Computers to query (default: local)")
    list_parser.add_argument(
        "--exclude",
        nargs="+",
        default=[],
        metavar="USER",
        help="User names to leave out of the listing",
    )
    _add_common_options(list_parser)

    delete_parser = subparsers.add_parser("delete", help="Delete user profiles from one or more computers")
    delete_parser.add_argument("targets", nargs="*", default=[], help="Computers to clean (default: local)")
    selection = delete_parser.add_mutually_exclusive_group(required=True)
    selection.add_argument("--user", dest="users", nargs="+", metavar="USER", help="User profiles to delete")
    selection.add_argument("--all", action="store_true", help="Delete every profile that is not loaded")
    delete_parser.add_argument(
        "--exclude",
        nargs="+",
        default=[],
        metavar="USER",
        help="User names protected from --all",
    )
    delete_parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    _add_common_options(delete_parser)

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address for the API")
    serve_parser.add_argument("--port", type=int, default=8080, help="Port for the API (default: 8080)")
    _add_common_options(serve_parser)

    args_list = list(argv) if argv is not None else sys.argv[1:]
    if not args_list:
        args_list = ["list"]
    elif args_list[0] not in _KNOWN_COMMANDS and args_list[0] not in ("-h", "--help"):
        args_list = ["list", *args_list]

    return parser.parse_args(args_list)


def _confirm_delete(args: argparse.Namespace) -> bool:
    targets = ", ".join(args.targets) or "local"
    if args.all:
        what = "ALL profiles that are not loaded"
        if args.exclude:
            what += f" (except {', '.join(args.exclude)})"
    else:
        what = "the profiles of " + ", ".join(args.users)
    answer = input(f"About to permanently delete {what} on {targets}. Continue? [y/N]: ").strip().lower()
    return answer in {"y", "yes"}


def _print_lines(lines: Sequence[str]) -> None:
    for line in lines:
        print(line)


def _finish(report: Report) -> None:
    if report.has_failures:
        raise SystemExit(1)


def _run_list(orchestrator: Orchestrator, args: argparse.Namespace) -> None:
    report = orchestrator.enumerate(args.targets, exclude=args.exclude)
    _print_lines(render_profiles(report))
    _finish(report)


def _run_delete(orchestrator: Orchestrator, args: argparse.Namespace) -> None:
    if not args.yes and not _confirm_delete(args):
        print("Cancelled.")
        return

    report = orchestrator.delete(
        args.targets,
        user_names=args.users or (),
        delete_all=args.all,
        exclude=args.exclude,
    )
    _print_lines(render_results(report))
    _finish(report)


def _serve(orchestrator: Orchestrator, *, host: str, port: int) -> None:
    from profilesweep.service import create_app
    import uvicorn

    try:
        app = create_app(orchestrator)
    except ValueError as exc:
        raise SystemExit(f"{exc}. Set PROFILESWEEP_API_TOKENS before starting the API.") from exc

    logger.info("Starting profile API on http://%s:%s", host, port)
    uvicorn.run(app, host=host, port=port, log_level="info")


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    try:
        config = load_sweep_config(args.config)
    except (ConfigError, OSError) as exc:
        raise SystemExit(f"Failed to load configuration: {exc}") from exc

    orchestrator = build_orchestrator(config, max_concurrency=args.max_concurrency)

    try:
        if args.command == "list":
            _run_list(orchestrator, args)
        elif args.command == "delete":
            _run_delete(orchestrator, args)
        elif args.command == "serve":
            _serve(orchestrator, host=args.host, port=args.port)
    except PreconditionError as exc:
        raise SystemExit(str(exc)) from exc


if __name__ == "__main__":
    main()
