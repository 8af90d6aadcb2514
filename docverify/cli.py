"""CLI entrypoints for docverify commands."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Iterable, List

from .build import ToolchainError
from .config import CONFIG_FILENAME, ConfigError, load_config
from .logging import configure_logging
from .models import Document
from .orchestrator import Orchestrator

_SKIPPED_DIRS = {".git", "target", "node_modules"}


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    kwargs: dict[str, object] = {
        "action": "store_true",
        "help": "Increase log verbosity for troubleshooting.",
    }
    if suppress_default:
        kwargs["default"] = argparse.SUPPRESS
    else:
        kwargs["default"] = False
    parser.add_argument(
        "-v",
        "--verbose",
        **kwargs,
    )


def _add_log_file_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    parser.add_argument(
        "--log-file",
        default=argparse.SUPPRESS if suppress_default else None,
        help="Also write a DEBUG-level log of the run, including toolchain commands, to this file.",
    )


def _add_config_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default=None,
        help=f"Path to {CONFIG_FILENAME} (defaults to the current directory).",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docverify",
        description="Compile and run the Rust code samples embedded in Markdown documentation.",
    )
    _add_verbose_option(parser)
    _add_log_file_option(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    check_parser = subparsers.add_parser(
        "check",
        help="Verify every code fragment in the given documents.",
    )
    _add_verbose_option(check_parser, suppress_default=True)
    _add_log_file_option(check_parser, suppress_default=True)
    _add_config_option(check_parser)
    check_parser.add_argument(
        "paths",
        nargs="*",
        default=["."],
        help="Markdown files or directories to scan (defaults to current directory).",
    )
    check_parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Ignore and do not update the verdict cache.",
    )
    check_parser.add_argument(
        "--annotate-dir",
        default=None,
        help="Write annotated copies of documents with failures into this directory.",
    )

    clean_parser = subparsers.add_parser(
        "clean",
        help="Remove harness projects and the verdict cache.",
    )
    _add_verbose_option(clean_parser, suppress_default=True)
    _add_log_file_option(clean_parser, suppress_default=True)
    _add_config_option(clean_parser)

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for docverify commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    log_file = Path(args.log_file) if args.log_file else None
    configure_logging(verbose=bool(args.verbose), log_file=log_file)

    try:
        config = load_config(Path(args.config or "."))
    except ConfigError as exc:
        parser.exit(2, f"docverify: invalid configuration: {exc}\n")

    if args.command == "clean":
        Orchestrator(config).clean()
        print(f"Cleaned {_relativize(config.work_dir)}")
        return

    annotate_dir = Path(args.annotate_dir) if args.annotate_dir else None
    if annotate_dir is not None:
        config.annotate = True

    try:
        documents = load_documents(args.paths)
    except OSError as exc:
        parser.exit(2, f"docverify: {exc}\n")
    if not documents:
        print("No Markdown documents found", file=sys.stderr)
        return

    orchestrator = Orchestrator(config, use_cache=not args.no_cache)
    try:
        outcome = orchestrator.run(documents)
    except ConfigError as exc:
        parser.exit(2, f"docverify: invalid configuration: {exc}\n")
    except ToolchainError as exc:
        parser.exit(2, f"docverify: toolchain unavailable: {exc}\nRun with --verbose for more details.\n")

    print(outcome.report.render(verbose=bool(args.verbose)), file=sys.stderr)

    if annotate_dir is not None:
        failing = {result.fragment.document for result in outcome.report.failures}
        for document in outcome.documents:
            if document.path in failing:
                relative = Path(document.path)
                if relative.is_absolute() or ".." in relative.parts:
                    relative = Path(relative.name)
                target = annotate_dir / relative
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(document.text, encoding="utf-8")
                print(f"Annotated copy written to {_relativize(target)}", file=sys.stderr)

    if outcome.exit_code:
        sys.exit(outcome.exit_code)


def load_documents(paths: Iterable[str]) -> List[Document]:
    """Read Markdown files, walking directories for ``*.md``."""
    documents: List[Document] = []
    seen: set[Path] = set()
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            candidates = sorted(
                candidate
                for candidate in path.rglob("*.md")
                if not _SKIPPED_DIRS & set(candidate.relative_to(path).parts)
            )
        elif path.exists():
            candidates = [path]
        else:
            raise FileNotFoundError(f"No such file or directory: {raw}")
        for candidate in candidates:
            resolved = candidate.resolve()
            if resolved in seen:
                continue
            seen.add(resolved)
            documents.append(
                Document(path=_relativize(candidate), text=candidate.read_text(encoding="utf-8"))
            )
    return documents


def _relativize(path: Path) -> str:
    try:
        return str(path.resolve().relative_to(Path.cwd()))
    except ValueError:
        return str(path)


if __name__ == "__main__":
    main(sys.argv[1:])
