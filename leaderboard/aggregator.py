# leaderboard/aggregator.py
"""
Leaderboard aggregation over the ledger.

Two strategies, one of which is scheduled (LEADERBOARD_STRATEGY):

* full        - recompute the last completed window per period type from
                scratch and replace that anchor's snapshot set. Re-running
                over the same window yields the same rows.
* incremental - fold ledger entries newer than the job watermark into the
                snapshot of the period each entry belongs to, then move the
                watermark to the last folded entry. Increments and the
                watermark advance commit together, so a failed batch is
                re-read on the next run.

Runs are single-flight per process.
"""
import logging
import threading
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import LedgerEntry, JobMeta, STAT_MODELS, utcnow
from commission.errors import CommissionError, InternalError, InvalidInputError
from commission.ledger import signed_amount, signed_amount_expr
from leaderboard.periods import completed_window, period_start, as_utc_naive, CALENDAR

logger = logging.getLogger(__name__)

FULL = "full"
INCREMENTAL = "incremental"
STRATEGIES = (FULL, INCREMENTAL)

WATERMARK_JOB = "leaderboard_update"
EPOCH = datetime(1970, 1, 1)

_run_lock = threading.Lock()


# ==========================================================
#                  WINDOW SUMS
# ==========================================================
def window_totals(start: datetime, end: datetime) -> Dict[int, Decimal]:
    """Signed ledger sum per account for created_at in [start, end)."""
    rows = (
        db.session.query(LedgerEntry.account_id, func.sum(signed_amount_expr()))
        .filter(LedgerEntry.created_at >= start, LedgerEntry.created_at < end)
        .group_by(LedgerEntry.account_id)
        .all()
    )
    return {account_id: Decimal(str(total or 0)) for account_id, total in rows}


def window_total(account_id: int, start: datetime, end: datetime) -> Decimal:
    total = (
        db.session.query(func.coalesce(func.sum(signed_amount_expr()), 0))
        .filter(
            LedgerEntry.account_id == account_id,
            LedgerEntry.created_at >= start,
            LedgerEntry.created_at < end,
        )
        .scalar()
    )
    return Decimal(str(total or 0))


def _retention() -> Dict[str, int]:
    return current_app.config["LEADERBOARD_RETENTION"]


# ==========================================================
#                  PRUNING
# ==========================================================
def prune_snapshots(model, keep: int) -> int:
    """Keep the newest `keep` anchors of `model`; returns rows removed."""
    anchors = [
        row[0]
        for row in db.session.query(model.period_start)
        .distinct()
        .order_by(model.period_start.desc())
        .all()
    ]
    if len(anchors) <= keep:
        return 0

    oldest_kept = anchors[keep - 1] if keep > 0 else None
    try:
        query = model.query
        if oldest_kept is not None:
            query = query.filter(model.period_start < oldest_kept)
        removed = query.delete(synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Pruning {model.__tablename__} failed: {e}", exc_info=True)
        raise InternalError(f"Failed to prune {model.__tablename__}") from e

    logger.info(f"Pruned {removed} rows from {model.__tablename__} (kept {keep} periods)")
    return removed


# ==========================================================
#                  FULL RECOMPUTE
# ==========================================================
def run_full_recompute(now: Optional[datetime] = None, policy: Optional[str] = None) -> Dict[str, dict]:
    now = as_utc_naive(now or utcnow())
    policy = policy or current_app.config.get("LEADERBOARD_WINDOW", CALENDAR)
    retention = _retention()
    summary = {}

    for kind, model in STAT_MODELS.items():
        anchor, start, end = completed_window(kind, now, policy)
        try:
            totals = window_totals(start, end)
            model.query.filter_by(period_start=anchor).delete(synchronize_session=False)
            for account_id, total in totals.items():
                db.session.add(model(account_id=account_id, period_start=anchor, total=total))
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Full recompute of {kind} window {start} - {end} failed: {e}", exc_info=True)
            raise InternalError(f"Failed to recompute {kind} leaderboard") from e

        pruned = prune_snapshots(model, int(retention[kind]))
        summary[kind] = {
            "anchor": anchor.isoformat(),
            "start": start.isoformat(),
            "end": end.isoformat(),
            "accounts": len(totals),
            "pruned": pruned,
        }
        logger.info(f"{kind} leaderboard recomputed for {anchor}: {len(totals)} accounts")

    return summary


# ==========================================================
#                  INCREMENTAL
# ==========================================================
def get_watermark() -> Optional[datetime]:
    meta = JobMeta.query.filter_by(job=WATERMARK_JOB).first()
    return meta.last_processed_at if meta else None


def _upsert_increment(model, account_id: int, anchor, delta: Decimal):
    row = model.query.filter_by(account_id=account_id, period_start=anchor).first()
    if row is None:
        db.session.add(model(account_id=account_id, period_start=anchor, total=delta))
    else:
        row.total = model.total + delta


def run_incremental(now: Optional[datetime] = None) -> dict:
    now = as_utc_naive(now or utcnow())

    try:
        meta = JobMeta.query.filter_by(job=WATERMARK_JOB).first()
        if meta is None:
            meta = JobMeta(job=WATERMARK_JOB, last_processed_at=EPOCH)
            db.session.add(meta)
            logger.info("Leaderboard watermark created, processing the whole ledger")
        watermark = meta.last_processed_at

        entries = (
            LedgerEntry.query.filter(
                LedgerEntry.created_at > watermark,
                LedgerEntry.created_at <= now,
            )
            .order_by(LedgerEntry.created_at.asc(), LedgerEntry.id.asc())
            .all()
        )

        increments = defaultdict(Decimal)
        for entry in entries:
            delta = signed_amount(entry.kind, entry.amount)
            for kind in STAT_MODELS:
                increments[(kind, period_start(kind, entry.created_at), entry.account_id)] += delta

        for (kind, anchor, account_id), delta in increments.items():
            _upsert_increment(STAT_MODELS[kind], account_id, anchor, delta)

        if entries:
            meta.last_processed_at = entries[-1].created_at
        db.session.commit()

    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Incremental leaderboard batch failed, watermark kept: {e}", exc_info=True)
        raise InternalError("Failed to update leaderboard incrementally") from e

    if not entries:
        logger.info("Leaderboard: no new ledger entries to process")
    else:
        logger.info(f"Leaderboard: folded {len(entries)} entries, watermark now {entries[-1].created_at}")

    retention = _retention()
    pruned = {kind: prune_snapshots(model, int(retention[kind])) for kind, model in STAT_MODELS.items()}

    return {
        "processed": len(entries),
        "watermark": (entries[-1].created_at if entries else watermark).isoformat(),
        "pruned": pruned,
    }


# ==========================================================
#                  DISPATCH
# ==========================================================
def run_leaderboard_job(strategy: Optional[str] = None, now: Optional[datetime] = None) -> dict:
    """
    Scheduler entry point. Failures are logged and reported in the summary,
    never raised, so the next scheduled run still happens.
    """
    if not _run_lock.acquire(blocking=False):
        logger.warning("Leaderboard job already running, skipping this run")
        return {"status": "skipped"}

    strategy = strategy or current_app.config.get("LEADERBOARD_STRATEGY", FULL)
    try:
        if strategy == FULL:
            result = run_full_recompute(now)
        elif strategy == INCREMENTAL:
            result = run_incremental(now)
        else:
            raise InvalidInputError(f"Unknown leaderboard strategy '{strategy}'", strategy=strategy)

        return {"status": "ok", "strategy": strategy, "result": result}

    except CommissionError as e:
        logger.error(f"Leaderboard job ({strategy}) failed: {e.message}", exc_info=True)
        return {"status": "failed", "strategy": strategy, "error": e.message}
    finally:
        _run_lock.release()
