"""bx CLI: build, run and manage box definitions."""

import argparse
import os
import shlex
import subprocess
import sys
import tempfile
from importlib.metadata import version as get_version, PackageNotFoundError
from typing import List, Optional

from boxwright.codes import ErrorCode
from boxwright.contracts import NodeOutcome, NodeStatus
from boxwright.kernel.errors import BoxError


def _print_outcome(outcome: NodeOutcome) -> None:
    if outcome.status is NodeStatus.BUILT:
        print(f"[BUILT] {outcome.name}")
    elif outcome.status is NodeStatus.CACHED:
        print(f"[CACHED] {outcome.name} (unchanged)")
    elif outcome.status is NodeStatus.FAILED:
        print(f"[FAILED] {outcome.name} at {outcome.stage}: {outcome.error}")
    elif outcome.status is NodeStatus.BLOCKED:
        print(f"[BLOCKED] {outcome.name} (a dependency failed)")
    else:
        print(f"[SKIPPED] {outcome.name}")


def _run_config(argv: List[str]) -> None:
    """Forward one directive from a harness shell to the orchestrator."""
    from ._internal.protocol import send_directive

    if not argv:
        print("usage: bx config <DIRECTIVE> [ARGS...]", file=sys.stderr)
        sys.exit(2)
    try:
        response = send_directive(argv[0], argv[1:])
    except BoxError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    if not response.ok:
        print(f"Error: {response.message}", file=sys.stderr)
        if response.hint:
            print(f"Hint: {response.hint}", file=sys.stderr)
        sys.exit(1)
    if response.result:
        print(response.result)


def _editor() -> List[str]:
    editor = os.environ.get("VISUAL") or os.environ.get("EDITOR")
    if not editor:
        raise BoxError(
            "Neither $VISUAL nor $EDITOR is set",
            code=ErrorCode.INVALID_CONTEXT,
            hint="Export EDITOR=vi (or your editor of choice).",
        )
    return shlex.split(editor)


def edit_definition(store, name: str) -> bool:
    """Open a copy of the definition in the editor; write back only if it parses.

    Returns True when the definition changed.
    """
    from .kernel.definition import parse_definition

    path = store.locate(name)
    if path is None:
        store.resolve(name)  # raises DefinitionNotFound with a suggestion
    original = path.read_text(encoding="utf-8")
    fd, tmp = tempfile.mkstemp(prefix=f"{name}-", suffix=".box")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(original)
        result = subprocess.run([*_editor(), tmp], check=False)
        if result.returncode != 0:
            raise BoxError(
                f"Editor exited with status {result.returncode}; {name} left unchanged",
                code=ErrorCode.INVALID_CONTEXT,
            )
        with open(tmp, "r", encoding="utf-8") as f:
            edited = f.read()
    finally:
        os.unlink(tmp)
    if edited == original:
        return False
    parse_definition(name, str(path), str(path.parent), edited)
    store.write(name, edited)
    return True


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point for bx commands."""
    argv = list(sys.argv[1:] if argv is None else argv)

    # Internal command used by harness shells; its arguments are opaque
    if argv and argv[0] == "config":
        _run_config(argv[1:])
        return

    try:
        bx_version = get_version("boxwright")
    except PackageNotFoundError:
        bx_version = "dev"

    parser = argparse.ArgumentParser(
        prog="bx",
        description="bx: build and run container images from shell-script definitions"
    )
    parser.add_argument("--version", action="version", version=f"bx {bx_version}")
    # Common arguments
    parent_parser = argparse.ArgumentParser(add_help=False)
    parent_parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Log more (-v for info, -vv for debug)."
    )
    parent_parser.add_argument(
        "--json",
        action="store_true",
        help="Print a machine-readable report instead of status lines."
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # build command
    build_parser = subparsers.add_parser(
        "build",
        help="Build definitions and their dependencies",
        parents=[parent_parser]
    )
    build_parser.add_argument("names", nargs="*", help="Definitions to build")
    build_parser.add_argument(
        "-a", "--all",
        action="store_true",
        help="Build every definition"
    )
    build_parser.add_argument(
        "-f", "--force",
        action="store_true",
        help="Rebuild the named definitions even if unchanged (dependencies still use the cache)"
    )
    build_parser.add_argument(
        "-j", "--jobs",
        type=int,
        default=None,
        help="Build up to N independent definitions at once (default: $BOX_JOBS or 1)"
    )
    build_parser.add_argument(
        "-n", "--dry-run",
        action="store_true",
        help="Run the scripts against an in-memory backend; no image is pulled or committed"
    )

    # up command
    up_parser = subparsers.add_parser(
        "up",
        help="Create and start containers from built definitions",
        parents=[parent_parser]
    )
    up_parser.add_argument("names", nargs="*", help="Definitions to start (default: all)")
    up_parser.add_argument(
        "--replace",
        action="store_true",
        help="Stop, remove and recreate containers that already exist"
    )

    # down command
    down_parser = subparsers.add_parser(
        "down",
        help="Stop and remove containers created by up",
        parents=[parent_parser]
    )
    down_parser.add_argument("names", nargs="*", help="Definitions to stop (default: all)")

    # create command
    create_parser = subparsers.add_parser(
        "create",
        help="Create a new definition",
        parents=[parent_parser]
    )
    create_parser.add_argument("name", help="Name of the new definition")
    create_parser.add_argument(
        "--no-edit",
        action="store_true",
        help="Write the template without opening an editor"
    )

    # edit command
    edit_parser = subparsers.add_parser(
        "edit",
        help="Edit a definition with $VISUAL or $EDITOR",
        parents=[parent_parser]
    )
    edit_parser.add_argument("name", help="Definition to edit")

    # delete command
    delete_parser = subparsers.add_parser(
        "delete",
        help="Delete a definition",
        parents=[parent_parser]
    )
    delete_parser.add_argument("name", help="Definition to delete")
    delete_parser.add_argument(
        "-y", "--yes",
        action="store_true",
        help="Do not ask for confirmation"
    )

    # list command
    subparsers.add_parser(
        "list",
        help="List definitions",
        parents=[parent_parser]
    )

    # init command
    init_parser = subparsers.add_parser(
        "init",
        help="Print the directive prelude for a shell",
        parents=[parent_parser]
    )
    init_parser.add_argument("shell", choices=["posix", "fish"], help="Shell dialect")

    subparsers.add_parser(
        "config",
        help="Forward a directive from a running definition (internal)"
    )

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    from ._internal.canonical_json import canonical_dumps
    from ._internal.logsetup import configure_logging
    from ._internal.settings import Settings
    from ._internal.store import DefinitionStore

    try:
        settings = Settings.from_env()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    configure_logging(args.verbose, settings.log_level)
    store = DefinitionStore.from_settings(settings)

    try:
        if args.command == "build":
            from .api import build

            if not args.names and not args.all:
                print("Error: Name at least one definition or pass --all.", file=sys.stderr)
                sys.exit(1)
            report = build(
                None if args.all else args.names,
                force=args.force,
                dry_run=args.dry_run,
                jobs=args.jobs,
                settings=settings,
                store=store,
                on_outcome=None if args.json else _print_outcome,
            )
            if args.json:
                print(canonical_dumps(report))
            if not report.ok:
                sys.exit(1)
        elif args.command == "up":
            from .api import up

            report = up(args.names, replace=args.replace, settings=settings, store=store)
            if args.json:
                print(canonical_dumps(report))
            else:
                for outcome in report.outcomes:
                    print(f"[{outcome.status.value.upper()}] {outcome.name}")
        elif args.command == "down":
            from .api import down

            report = down(args.names, settings=settings, store=store)
            if args.json:
                print(canonical_dumps(report))
            else:
                for outcome in report.outcomes:
                    print(f"[{outcome.status.value.upper()}] {outcome.name}")
        elif args.command == "create":
            path = store.create(args.name)
            if not args.no_edit:
                edit_definition(store, args.name)
            print(f"[OK] Created {args.name}")
            print(f"  Path: {path}")
        elif args.command == "edit":
            if edit_definition(store, args.name):
                print(f"[OK] Updated {args.name}")
            else:
                print(f"[OK] {args.name} unchanged")
        elif args.command == "delete":
            path = store.locate(args.name)
            if path is None:
                store.resolve(args.name)
            if not args.yes:
                answer = input(f"Delete {path}? [y/N] ")
                if answer.strip().lower() not in ("y", "yes"):
                    print("Aborted")
                    sys.exit(1)
            store.delete(args.name)
            print(f"[OK] Deleted {args.name}")
        elif args.command == "list":
            definitions = store.list()
            if args.json:
                print(canonical_dumps([
                    {"name": d.name, "path": d.path, "depends_on": list(d.depends_on)}
                    for d in definitions
                ]))
            else:
                for d in definitions:
                    deps = f" (depends on: {', '.join(d.depends_on)})" if d.depends_on else ""
                    print(f"{d.name}{deps}")
        elif args.command == "init":
            from ._internal.harness import render_prelude
            from .kernel.definition import InterpreterKind

            sys.stdout.write(render_prelude(InterpreterKind(args.shell)))
        else:
            parser.print_help()
            sys.exit(1)
    except BoxError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    main()
