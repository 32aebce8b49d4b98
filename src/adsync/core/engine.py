"""
Analysis orchestrator.

analyze(rows, mapping, directory) -> Analysis

Lifecycle:
  preparing (default OU) -> rows (bounded worker pool, RowPlanner per row)
  -> orphans (once, over the whole batch) -> summary

- No directory writes. The result is immutable and complete, or the call
  raises: there is no partial Analysis.
- Row failures are recovered inside the planner; only cancellation, a
  failing orphan scan or an unexpected planner crash fail the call.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Iterable, List, Mapping, Optional, Set, Union

from .cache import PlanningContext
from .directory import DirectoryReader, ShareInspector
from .logging_setup import NullAdapter
from .mapping import MappingConfig
from .models import Action, Analysis, Row
from .orphans import OrphanDetector
from .planner import RowPlanner
from .progress import ProgressCallback, ProgressReporter
from .summary import format_summary, summarize

RowLike = Union[Row, Mapping[str, Any]]

_POLL_SEC = 0.1


class AnalysisError(RuntimeError):
    """The whole analysis failed; no Analysis is produced."""


class AnalysisCancelled(AnalysisError):
    """The caller cancelled the analysis."""


def default_workers() -> int:
    return min(32, (os.cpu_count() or 1) * 4)


def _as_rows(rows: Iterable[RowLike]) -> List[Row]:
    out: List[Row] = []
    for i, r in enumerate(rows):
        out.append(r if isinstance(r, Row) else Row(r, index=i))
    return out


def _check_cancel(cancel: threading.Event) -> None:
    if cancel.is_set():
        raise AnalysisCancelled("Analysis cancelled")


def analyze(
    rows: Iterable[RowLike],
    mapping: MappingConfig,
    directory: DirectoryReader,
    *,
    shares: Optional[ShareInspector] = None,
    cancel_event: Optional[threading.Event] = None,
    progress: Optional[ProgressCallback] = None,
    max_workers: Optional[int] = None,
    progress_every: int = 100,
    logger: Optional[logging.LoggerAdapter] = None,
    run_id: str = "",
) -> Analysis:
    """
    Plan every action needed to bring the directory in line with `rows`.

    `shares` defaults to `directory` when it also implements share_exists.
    Raises AnalysisCancelled when `cancel_event` is set, AnalysisError when
    the batch cannot be completed.
    """
    log = logger or NullAdapter()
    started = time.monotonic()
    cancel = cancel_event or threading.Event()
    reporter = ProgressReporter(progress, log)
    if shares is None and hasattr(directory, "share_exists"):
        shares = directory  # type: ignore[assignment]

    batch = _as_rows(rows)
    workers = max(1, int(max_workers or default_workers()))
    log.info(
        "Analysis started: %s rows, mapping=%s, root=%s, workers=%s",
        len(batch), mapping.name, mapping.default_ou or "-", workers,
    )
    reporter.phase("preparing", 0.0, f"{len(batch)} rows to analyze")
    _check_cancel(cancel)

    ctx = PlanningContext(mapping, directory.ou_exists, log)
    if mapping.default_ou:
        try:
            ctx.ensure_ou(mapping.default_ou)
        except Exception as exc:
            # rows targeting it will surface the failure individually
            log.warning("Cannot verify default OU %s: %s", mapping.default_ou, exc)
    reporter.phase("preparing", 1.0, "Default OU checked")

    planner = RowPlanner(ctx, directory, shares, log)
    per_row = _plan_rows(batch, planner, cancel, reporter, workers, max(1, progress_every), log)
    _check_cancel(cancel)

    reporter.phase("orphans", 0.0, "Looking for orphaned accounts")
    try:
        orphan_actions = OrphanDetector(mapping, directory, log).detect(batch, ctx)
    except Exception as exc:
        log.error("Orphan detection failed: %s", exc)
        raise AnalysisError(f"Orphan detection failed: {exc}") from exc
    _check_cancel(cancel)
    reporter.phase("orphans", 1.0, f"{len(orphan_actions)} cleanup actions")

    actions: List[Action] = list(ctx.scheduled_actions())
    for planned in per_row:
        actions.extend(planned)
    actions.extend(orphan_actions)

    dropped = [a for a in actions if not mapping.is_enabled(a.kind)]
    if dropped:
        log.info("Dropped %s actions of disabled kinds", len(dropped))
        actions = [a for a in actions if mapping.is_enabled(a.kind)]

    summary = summarize(actions, total_objects=len(batch))
    duration = time.monotonic() - started
    log.info("Analysis completed in %.2fs: %s", duration, format_summary(summary))
    reporter.report(100, "completed", format_summary(summary))
    return Analysis(actions=tuple(actions), summary=summary, run_id=run_id, duration_sec=duration)


def _plan_rows(
    batch: List[Row],
    planner: RowPlanner,
    cancel: threading.Event,
    reporter: ProgressReporter,
    workers: int,
    every: int,
    log: logging.LoggerAdapter,
) -> List[List[Action]]:
    total = len(batch)
    if total == 0:
        reporter.phase("rows", 1.0, "No rows")
        return []

    stop = threading.Event()
    results: List[List[Action]] = [[] for _ in batch]

    def work(pos: int, row: Row) -> int:
        if cancel.is_set() or stop.is_set():
            raise AnalysisCancelled("Analysis cancelled")
        results[pos] = planner.plan(row)
        return pos

    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="adsync-row")
    try:
        pending: Set[Future] = {executor.submit(work, pos, row) for pos, row in enumerate(batch)}
        done_count = 0
        while pending:
            done, pending = wait(pending, timeout=_POLL_SEC, return_when=FIRST_COMPLETED)
            _check_cancel(cancel)
            for fut in done:
                try:
                    fut.result()
                except AnalysisError:
                    raise
                except Exception as exc:
                    log.exception("Row planning crashed: %s", exc)
                    raise AnalysisError(f"Row planning failed: {exc}") from exc
                done_count += 1
                if done_count % every == 0 or done_count == total:
                    reporter.phase("rows", done_count / total, f"{done_count}/{total} rows analyzed")
    except BaseException:
        stop.set()
        executor.shutdown(wait=False, cancel_futures=True)
        raise
    executor.shutdown(wait=True)
    return results
