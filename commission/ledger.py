# commission/ledger.py
"""
Ledger access. The ledger is the source of truth; the three cached totals on
Account are a projection that post_entry keeps in step inside the caller's
transaction and reconcile_* re-derive when they drift.
"""
import logging
from decimal import Decimal
from typing import Dict, List

from sqlalchemy import func, case
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import (
    Account, LedgerEntry, LedgerKind, JobMeta, STAT_MODELS, utcnow,
)
from commission.errors import InvalidInputError, InternalError

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

# Which cached field each kind moves, in addition to balance
_CACHE_FIELD = {
    LedgerKind.DIRECT.value: "direct_income",
    LedgerKind.PASSIVE.value: "passive_income",
    LedgerKind.WITHDRAWAL.value: "passive_income",
}


def signed_amount(kind: str, amount) -> Decimal:
    """Direct and passive credit the account, withdrawals debit it."""
    amount = Decimal(str(amount))
    if kind == LedgerKind.WITHDRAWAL.value:
        return -amount
    if kind in (LedgerKind.DIRECT.value, LedgerKind.PASSIVE.value):
        return amount
    raise InvalidInputError(f"Unknown ledger kind '{kind}'", kind=kind)


def signed_amount_expr():
    """SQL expression equivalent of signed_amount, for aggregation queries."""
    return case(
        (LedgerEntry.kind == LedgerKind.WITHDRAWAL.value, -LedgerEntry.amount),
        else_=LedgerEntry.amount,
    )


def post_entry(account: Account, kind: str, amount, created_at=None) -> LedgerEntry:
    """
    Append one ledger entry and apply the same delta to the cached fields.
    Does not commit: the caller owns the transaction.
    """
    amount = Decimal(str(amount))
    if amount <= 0:
        raise InvalidInputError("Ledger amounts must be positive", amount=str(amount))

    delta = signed_amount(kind, amount)
    field = _CACHE_FIELD[kind]

    entry = LedgerEntry(
        account_id=account.id,
        kind=kind,
        amount=amount,
        created_at=created_at or utcnow(),
    )
    db.session.add(entry)

    setattr(account, field, Decimal(str(getattr(account, field) or 0)) + delta)
    account.balance = Decimal(str(account.balance or 0)) + delta

    logger.info(f"Ledger: {kind} {amount} for account {account.id}")
    return entry


def derive_balances(account_id: int) -> Dict[str, Decimal]:
    """Recompute direct_income, passive_income and balance from the ledger."""
    rows = (
        db.session.query(LedgerEntry.kind, func.coalesce(func.sum(LedgerEntry.amount), 0))
        .filter(LedgerEntry.account_id == account_id)
        .group_by(LedgerEntry.kind)
        .all()
    )
    totals = {kind: Decimal(str(total)) for kind, total in rows}

    direct = totals.get(LedgerKind.DIRECT.value, ZERO)
    passive = totals.get(LedgerKind.PASSIVE.value, ZERO)
    withdrawn = totals.get(LedgerKind.WITHDRAWAL.value, ZERO)

    return {
        "direct_income": direct,
        "passive_income": passive - withdrawn,
        "balance": direct + passive - withdrawn,
    }


def _apply_derived(account: Account) -> bool:
    derived = derive_balances(account.id)
    drifted = False
    for field, value in derived.items():
        if Decimal(str(getattr(account, field) or 0)) != value:
            drifted = True
            setattr(account, field, value)
    return drifted


def reconcile_account(account: Account) -> bool:
    """Overwrite the cached totals with ledger-derived values. Returns True on drift."""
    try:
        drifted = _apply_derived(account)
        if drifted:
            logger.warning(f"Account {account.id} cache drifted from ledger, overwritten")
        db.session.commit()
        return drifted
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Reconcile failed for account {account.id}: {e}", exc_info=True)
        raise InternalError("Failed to reconcile account") from e


def reconcile_all() -> List[int]:
    """Reconcile every account in one transaction; returns the ids that drifted."""
    drifted_ids = []
    try:
        for account in Account.query.order_by(Account.id).all():
            if _apply_derived(account):
                drifted_ids.append(account.id)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Reconcile-all failed: {e}", exc_info=True)
        raise InternalError("Failed to reconcile accounts") from e

    if drifted_ids:
        logger.warning(f"Reconciled {len(drifted_ids)} drifted accounts: {drifted_ids}")
    else:
        logger.info("Reconcile-all: every account matches the ledger")
    return drifted_ids


def wipe_ledger() -> int:
    """
    Administrative wipe: removes every ledger entry, all leaderboard snapshots
    and the job watermark, then zeroes the cached totals.
    """
    try:
        deleted = LedgerEntry.query.delete(synchronize_session=False)
        for model in STAT_MODELS.values():
            model.query.delete(synchronize_session=False)
        JobMeta.query.delete(synchronize_session=False)
        Account.query.update(
            {
                Account.balance: ZERO,
                Account.direct_income: ZERO,
                Account.passive_income: ZERO,
            },
            synchronize_session=False,
        )
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Ledger wipe failed: {e}", exc_info=True)
        raise InternalError("Failed to wipe ledger") from e

    logger.warning(f"Ledger wiped: {deleted} entries removed")
    return deleted


def list_entries(search: str = None, kind: str = None, page: int = 1, limit: int = 50):
    """Admin ledger listing, newest first, optionally filtered by owner name/email."""
    query = LedgerEntry.query.join(Account, LedgerEntry.account_id == Account.id)
    if kind:
        query = query.filter(LedgerEntry.kind == kind)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(db.or_(Account.name.ilike(pattern), Account.email.ilike(pattern)))

    total = query.count()
    entries = (
        query.order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return entries, total
