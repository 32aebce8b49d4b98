"""
Command-line interface for adsync.

Usage (examples):
  - Offline analysis against a YAML directory snapshot:
      adsync analyze --mapping students --rows ./data/students.xlsx --snapshot ./data/ad.yml

  - Live analysis (read-only LDAP queries):
      adsync analyze --mapping students --rows ./data/students.csv \
        --server dc01.school.local --bind-dn "CN=svc,DC=school,DC=local" \
        --password "$PW" --search-base "DC=school,DC=local"

  - Check how a mapping resolves rows, without any directory:
      adsync preview --mapping students --rows ./data/students.csv --limit 5
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Dict, Iterable, Optional

from .core.config import AppConfig, ConfigError, load_config
from .core.directory import DirectoryError, SnapshotDirectory, UncShareInspector
from .core.engine import AnalysisCancelled, AnalysisError, analyze
from .core.ldap_directory import LdapDirectory
from .core.logging_setup import build_logger
from .core.mapping import MappingConfig, MappingError, MappingLoader
from .core.paths import resolve_target_ou
from .core.progress import TerminalProgress
from .core.reporting import print_actions, write_analysis
from .core.rows import RowReadError, read_rows
from .core.templates import build_attributes, identity_key

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_ROW_ERRORS = 2
EXIT_CANCELLED = 130


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="adsync", description="Plan directory changes from spreadsheet rows")

    sub = p.add_subparsers(dest="cmd", required=True)

    a = sub.add_parser("analyze", help="Plan actions for rows against a directory (no writes)")
    a.add_argument("--mapping", default=None, help="Mapping name (without .yml)")
    a.add_argument("--rows", default=None, help="Input rows file (.csv or .xlsx)")
    a.add_argument("--sheet", default=None, help="Worksheet name for .xlsx inputs")
    a.add_argument("--search-path", default=None, help="Mappings search path")

    # Directory backend
    a.add_argument("--snapshot", default=None, help="YAML directory snapshot (offline backend)")
    a.add_argument("--server", default=None, help="LDAP server host (selects the ldap backend)")
    a.add_argument("--port", type=int, default=None, help="LDAP port")
    a.add_argument("--use-ssl", action="store_true", default=None, help="Use LDAPS")
    a.add_argument("--bind-dn", default=None, help="LDAP bind DN")
    a.add_argument("--password", default=None, help="LDAP bind password")
    a.add_argument("--search-base", default=None, help="LDAP search base for account lookups")

    # Run
    a.add_argument("--workers", type=int, default=None, help="Concurrent row planners")
    a.add_argument("--format", default="table", choices=["table", "json"], help="Output format")
    a.add_argument("--output", default=None, help="Also write the analysis as JSON to this file")
    a.add_argument("--no-progress", action="store_true", help="Disable the progress bar")

    _add_logging_args(a)

    pv = sub.add_parser("preview", help="Show resolved attributes and target OU of the first rows")
    pv.add_argument("--mapping", default=None, help="Mapping name (without .yml)")
    pv.add_argument("--rows", default=None, help="Input rows file (.csv or .xlsx)")
    pv.add_argument("--sheet", default=None, help="Worksheet name for .xlsx inputs")
    pv.add_argument("--search-path", default=None, help="Mappings search path")
    pv.add_argument("--limit", type=int, default=5, help="Number of rows to show")

    return p


def _add_logging_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--logs-dir", default=None, help="Logs base directory")
    p.add_argument("--console-level", default=None, help="Console log level (INFO..CRITICAL)")
    p.add_argument("--file-level", default=None, help="File log level (DEBUG..CRITICAL)")


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    def opt(name: str) -> Any:
        return getattr(args, name, None)

    directory: Dict[str, Any] = {
        "snapshot_path": opt("snapshot"),
        "server": opt("server"),
        "port": opt("port"),
        "use_ssl": opt("use_ssl"),
        "bind_dn": opt("bind_dn"),
        "password": opt("password"),
        "search_base": opt("search_base"),
    }
    if opt("server"):
        directory["backend"] = "ldap"
    elif opt("snapshot"):
        directory["backend"] = "snapshot"

    return {
        "app": {"concurrency": opt("workers")},
        "directory": directory,
        "mapping": {
            "name": opt("mapping"),
            "search_paths": [args.search_path] if opt("search_path") else None,
        },
        "logging": {
            "base_dir": opt("logs_dir"),
            "console_level": opt("console_level"),
            "file_level": opt("file_level"),
        },
        "inputs": {"rows_path": opt("rows"), "sheet": opt("sheet")},
    }


def _load_mapping(cfg: AppConfig) -> MappingConfig:
    return MappingLoader(search_paths=list(cfg.mapping.search_paths)).load(cfg.mapping.name)


def _open_directory(cfg: AppConfig, mapping: MappingConfig, logger: Any):
    """Return (directory, shares, closer) for the configured backend."""
    d = cfg.directory
    if d.backend == "ldap":
        ldap = LdapDirectory.connect(
            server=d.server,
            bind_dn=d.bind_dn,
            password=d.password,
            search_base=d.search_base,
            port=d.port,
            use_ssl=bool(d.use_ssl),
            timeout_sec=int(d.timeout_sec),
            account_attribute=mapping.identity_attribute,
            logger=logger,
        )
        return ldap, UncShareInspector(), ldap.close
    snapshot = SnapshotDirectory.from_yaml(d.snapshot_path)
    logger.info("Using directory snapshot %s", d.snapshot_path)
    return snapshot, snapshot, None


def _analyze_cmd(args: argparse.Namespace) -> int:
    # 1) Config
    try:
        cfg = load_config(_overrides(args))
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_FAILURE
    if not cfg.inputs.rows_path:
        print("Configuration error: no rows file (--rows or inputs.rows_path)", file=sys.stderr)
        return EXIT_FAILURE

    # 2) Mapping, then the logger carrying its context
    try:
        mapping = _load_mapping(cfg)
    except MappingError as exc:
        print(f"Mapping error: {exc}", file=sys.stderr)
        return EXIT_FAILURE

    logger = build_logger(
        run_id=cfg.run_id,
        action="analyze",
        base_dir=cfg.logging.base_dir,
        console_level=cfg.logging.console_level,
        file_level=cfg.logging.file_level,
        extra={"mapping": mapping.name, "root": mapping.default_ou},
    )
    logger.info("Starting adsync analyze (backend=%s)", cfg.directory.backend)

    # 3) Rows
    try:
        rows = read_rows(cfg.inputs.rows_path, delimiter=mapping.delimiter, sheet=cfg.inputs.sheet)
    except RowReadError as exc:
        logger.error("%s", exc)
        return EXIT_FAILURE
    logger.info("Loaded %s input rows from %s", len(rows), cfg.inputs.rows_path)

    # 4) Directory + analysis
    closer = None
    try:
        directory, shares, closer = _open_directory(cfg, mapping, logger)
        with TerminalProgress(enabled=False if args.no_progress else None) as bar:
            result = analyze(
                rows,
                mapping,
                directory,
                shares=shares,
                progress=bar,
                max_workers=cfg.app.concurrency,
                progress_every=cfg.app.progress_every,
                logger=logger,
                run_id=cfg.run_id,
            )
    except (KeyboardInterrupt, AnalysisCancelled):
        logger.warning("Analysis cancelled")
        return EXIT_CANCELLED
    except (DirectoryError, AnalysisError, OSError) as exc:
        logger.error("Analysis failed: %s", exc)
        return EXIT_FAILURE
    finally:
        if closer is not None:
            closer()

    # 5) Report
    print_actions(result, fmt=args.format)
    if args.output:
        write_analysis(result, args.output)
        logger.info("Analysis written to %s", args.output)

    if result.summary.error_count:
        logger.warning("%s rows could not be planned", result.summary.error_count)
        return EXIT_ROW_ERRORS
    return EXIT_OK


def _preview_cmd(args: argparse.Namespace, out: Optional[Any] = None) -> int:
    try:
        cfg = load_config(_overrides(args), require_directory=False)
        mapping = _load_mapping(cfg)
        rows = read_rows(cfg.inputs.rows_path, delimiter=mapping.delimiter, sheet=cfg.inputs.sheet)
    except (ConfigError, MappingError, RowReadError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FAILURE

    for row in rows[: max(0, args.limit)]:
        attrs = build_attributes(row, mapping)
        doc = {
            "row": row.index,
            "account": identity_key(attrs, mapping),
            "target_ou": resolve_target_ou(row, mapping),
            "attributes": attrs,
        }
        print(json.dumps(doc, indent=2, ensure_ascii=False), file=out)
    return EXIT_OK


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.cmd == "analyze":
        return _analyze_cmd(args)
    if args.cmd == "preview":
        return _preview_cmd(args)

    parser.error("Unknown command")  # pragma: no cover
    return EXIT_FAILURE  # pragma: no cover


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
