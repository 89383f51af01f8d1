from __future__ import annotations

import argparse
import signal
import sys
from contextlib import contextmanager
from pathlib import Path

from dotenv import load_dotenv

from bulk_import.config.loader import ConfigError, build_clients, load_config, resolve_config_path
from bulk_import.logging.error_log import ErrorLogBuffer
from bulk_import.logging.init import log_summary, set_debug, setup_logging
from bulk_import.models.config_models import ImportConfig, PipelineConfig
from bulk_import.remote.client import ApiError
from bulk_import.services.controller import PipelineController, RunAbortedError
from bulk_import.services.reconciler import ExecutionBlockedError, ReconciliationCallError
from bulk_import.services.schema_mapper import MappingError, MappingIncompleteError, auto_map
from bulk_import.services.state_machine import PipelineStateError
from bulk_import.services.summary import render_batch_lines, render_follow_up, render_summary_line
from bulk_import.tabular.header import HeaderRowError, header_candidates, header_labels, suggest_header_row
from bulk_import.tabular.reader import EmptyFileError, UnsupportedFileError, read_table_file

"""CLI entrypoint.

Subcommands:
- ``inspect``: print the first rows of a file, the suggested header row and
  the auto mapping for a pipeline (nothing remote is called)
- ``run``: upload -> header -> mapping -> validate -> execute, non-interactive;
  operator choices come from ``--header-row`` / ``--map`` / ``--unset``

Exit codes: 0 every batch applied (or dry run passed), 2 some batch failed or
was skipped, 1 fatal (config, file, mapping, reconciliation, blocked, aborted).
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv.

    override=True により .env の値で既存環境変数を上書き (API URL / トークン優先)。
    """
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="bulk-import", description="CSV/Excel -> catalog bulk importer")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--config", type=Path, default=None, help="Pipelines YAML (default: $BULK_IMPORT_CONFIG or packaged)")
    sub = p.add_subparsers(dest="command", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--pipeline", required=True, help="Pipeline name, e.g. opening_stock / bulk_deactivate")
    common.add_argument("--file", type=Path, required=True, help=".csv / .xlsx / .xls file")

    sub.add_parser("inspect", parents=[common], help="Print rows, suggested header and auto mapping then exit")

    run = sub.add_parser("run", parents=[common], help="Validate and execute the import")
    run.add_argument("--header-row", type=int, default=None, help="1-based header row (default: suggested)")
    run.add_argument("--map", action="append", default=[], metavar="KEY=LABEL", help="Bind a field to a column")
    run.add_argument("--unset", action="append", default=[], metavar="KEY", help="Leave a field unmapped")
    run.add_argument("--branch-id", type=int, default=None, help="Execution context: branch_id (default from pipeline config)")
    run.add_argument("--invoice-date", default=None, help="Execution context: invoice_date (YYYY-MM-DD, default today)")
    run.add_argument("--dry-run", action="store_true", help="Validate only; do not execute")
    return p.parse_args(argv)


def _pipeline(cfg: ImportConfig, name: str) -> PipelineConfig:
    try:
        return cfg.pipelines[name]
    except KeyError:
        raise ConfigError(f"unknown pipeline {name!r}; available: {', '.join(sorted(cfg.pipelines))}") from None


def _parse_map(values: list[str]) -> list[tuple[str, str]]:
    pairs = []
    for v in values:
        key, sep, label = v.partition("=")
        if not sep or not key.strip():
            raise MappingError(f"--map expects KEY=LABEL, got {v!r}")
        pairs.append((key.strip(), label.strip()))
    return pairs


def _inspect_data(pipeline: PipelineConfig, path: Path) -> int:
    grid = read_table_file(path)
    suggested = suggest_header_row(grid, pipeline.min_header_cells)
    print(f"FILE: {path.name} rows={len(grid)}")
    for idx, row in header_candidates(grid):
        marker = "*" if idx == suggested else " "
        print(f" {marker}{idx + 1:>3}: {list(row)}")
    headers = header_labels(grid, suggested)
    mapping = auto_map(headers, pipeline.fields)
    print(f"suggested_header_row={suggested + 1}")
    for f in pipeline.fields:
        label = mapping.label_for(f.key)
        req = " (required)" if f.required else ""
        print(f"  {f.key}{req} -> {label if label is not None else '-'}")
    return EXIT_SUCCESS_ALL


@contextmanager
def _cancel_on_interrupt(controller: PipelineController):
    """First Ctrl-C cancels after the in-flight batch instead of killing the run."""
    def handler(signum, frame):  # noqa: ARG001
        controller.cancel()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _run(cfg: ImportConfig, pipeline: PipelineConfig, args: argparse.Namespace, error_log: ErrorLogBuffer, logger) -> int:
    context = {}
    if args.branch_id is not None:
        context["branch_id"] = args.branch_id
    if args.invoice_date is not None:
        context["invoice_date"] = args.invoice_date
    matcher, executor = build_clients(cfg, pipeline, context)
    controller = PipelineController(pipeline, matcher, executor, error_log=error_log)

    controller.upload_file(args.file)
    header_index = None if args.header_row is None else args.header_row - 1
    state = controller.confirm_header(header_index)
    logger.info("header row=%d columns=%d", state.header_index + 1, len(state.headers))
    for key, label in _parse_map(args.map):
        controller.map_field(key, label)
    for key in args.unset:
        controller.unset_field(key)
    state = controller.confirm_mapping()
    logger.info("mapping %s", state.mapping.to_plain_dict())

    preview = controller.validate()
    result = preview.reconciliation
    logger.info(
        "validated matched=%d unmatched=%d already_done=%d",
        len(result.matched),
        len(result.unmatched),
        len(result.already_done),
    )
    if args.dry_run:
        if pipeline.require_full_match and result.has_unmatched:
            logger.error("dry-run: execution would be blocked, %d identifier(s) unmatched", len(result.unmatched))
            return EXIT_FATAL
        logger.info("dry-run: skipping execution")
        return EXIT_SUCCESS_ALL

    with _cancel_on_interrupt(controller):
        report = controller.execute()

    for line in render_batch_lines(report):
        logger.info(line)
    follow_up = render_follow_up(report)
    if follow_up:
        logger.warning(follow_up)
    # log_summary が "SUMMARY " を付けるので除去
    log_summary(render_summary_line(report)[len("SUMMARY "):])

    if report.failed_batches or report.skipped_batches:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # NOTE: 空リスト [] が渡された場合に sys.argv[1:] が混入しないよう None のときのみ読む
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    # .env を最優先で読み込む (API 接続パラメータ優先順位保証)
    _load_env_file(Path(".env"), override=True)

    if args.debug:
        set_debug(True)
        logger.debug("debug mode enabled")

    try:
        cfg = load_config(resolve_config_path(args.config))
        pipeline = _pipeline(cfg, args.pipeline)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if not args.file.exists():
        logger.error(f"file not found: {args.file}")
        return EXIT_FATAL

    if args.command == "inspect":
        try:
            return _inspect_data(pipeline, args.file)
        except (EmptyFileError, UnsupportedFileError, HeaderRowError) as e:
            logger.error(f"file: {e}")
            return EXIT_FATAL

    error_log = ErrorLogBuffer()
    try:
        return _run(cfg, pipeline, args, error_log, logger)
    except (EmptyFileError, UnsupportedFileError, HeaderRowError) as e:
        logger.error(f"file: {e}")
    except MappingIncompleteError as e:
        logger.error(f"mapping: {e}; use --map KEY=LABEL")
    except (MappingError, PipelineStateError) as e:
        logger.error(f"mapping: {e}")
    except ReconciliationCallError as e:
        logger.error(f"validation: {e}")
    except ExecutionBlockedError as e:
        logger.error(f"blocked: {e}")
    except RunAbortedError as e:
        logger.error(f"aborted: {e}")
    except (ConfigError, ApiError) as e:
        logger.error(f"config: {e}")
    finally:
        counts = error_log.counts()
        written = error_log.flush()
        if written is not None:
            detail = " ".join(f"{k}={v}" for k, v in sorted(counts.items()))
            logger.info(f"error log written: {written} ({detail})")
    return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
