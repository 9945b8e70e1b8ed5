# leaderboard/query.py
import logging
from typing import Dict, List

from flask import current_app
from sqlalchemy import func

from extensions import db
from models import Account, Role, STAT_MODELS
from commission.errors import InvalidInputError

logger = logging.getLogger(__name__)

ALL_TIME = "all-time"
LEADERBOARD_TYPES = tuple(STAT_MODELS) + (ALL_TIME,)


def _referral_counts(account_ids: List[int]) -> Dict[int, int]:
    if not account_ids:
        return {}
    rows = (
        db.session.query(Account.referrer_id, func.count(Account.id))
        .filter(Account.referrer_id.in_(account_ids))
        .group_by(Account.referrer_id)
        .all()
    )
    return {referrer_id: count for referrer_id, count in rows}


def _row(account: Account, total, members: int) -> dict:
    return {
        "accountId": account.id,
        "name": account.name or "Unknown",
        "balance": float(account.balance or 0),
        "plan": account.plan,
        "referralCode": account.referral_code,
        "referrerId": account.referrer_id,
        "total": float(total or 0),
        "members": members,
    }


def get_leaderboard(period: str, limit: int = None) -> dict:
    """
    Top accounts for `period`.

    daily/weekly/monthly read the newest snapshot anchor; rows whose account
    no longer exists are dropped by the join. all-time ranks non-admin
    accounts with a positive balance by balance.
    """
    if period not in LEADERBOARD_TYPES:
        raise InvalidInputError(
            f"Invalid type. Must be one of: {', '.join(LEADERBOARD_TYPES)}", type=period
        )
    limit = limit or current_app.config.get("LEADERBOARD_TOP_N", 10)

    if period == ALL_TIME:
        accounts = (
            Account.query.filter(Account.role != Role.ADMIN.value, Account.balance > 0)
            .order_by(Account.balance.desc(), Account.id.asc())
            .limit(limit)
            .all()
        )
        counts = _referral_counts([a.id for a in accounts])
        data = [_row(a, a.balance, counts.get(a.id, 0)) for a in accounts]
        return {"type": period, "data": data}

    model = STAT_MODELS[period]
    latest = db.session.query(func.max(model.period_start)).scalar()
    if latest is None:
        return {"type": period, "data": [], "message": f"No {period} leaderboard data available yet"}

    rows = (
        db.session.query(model, Account)
        .join(Account, Account.id == model.account_id)
        .filter(model.period_start == latest)
        .order_by(model.total.desc(), model.account_id.asc())
        .limit(limit)
        .all()
    )
    counts = _referral_counts([account.id for _, account in rows])
    data = [_row(account, stat.total, counts.get(account.id, 0)) for stat, account in rows]

    return {"type": period, "anchor": latest.isoformat(), "data": data}
