from decimal import Decimal, InvalidOperation, ROUND_DOWN
import logging
import math
from typing import Tuple, Dict, List

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from extensions import db
from models import Account, Withdrawal, WithdrawalStatus, LedgerKind, utcnow
from commission.accounts import lock_account
from commission.errors import (
    CommissionError, NotFoundError, InvalidStateError, ConflictError,
    InsufficientFundsError, InvalidInputError, InternalError,
)
from commission.ledger import post_entry


logger = logging.getLogger(__name__)

# ==========================================================
#                  CONFIGURATION
# ==========================================================
class WithdrawalConfig:
    DEFAULT_MIN_WITHDRAWAL = Decimal("30")

    @staticmethod
    def min_withdrawal() -> Decimal:
        return Decimal(str(current_app.config.get("MIN_WITHDRAWAL", WithdrawalConfig.DEFAULT_MIN_WITHDRAWAL)))

    @staticmethod
    def normalize(amount: Decimal) -> Decimal:
        return amount.quantize(Decimal("0.01"), rounding=ROUND_DOWN)


# ==========================================================
#                  WITHDRAWAL VALIDATOR
# ==========================================================
class WithdrawalValidator:
    @staticmethod
    def parse_request(bank_name, bank_account_number, amount) -> Tuple[str, str, Decimal]:
        """Field and amount checks that need no database access."""
        bank_name = (bank_name or "").strip() if isinstance(bank_name, str) else bank_name
        bank_account_number = (
            (bank_account_number or "").strip() if isinstance(bank_account_number, str) else bank_account_number
        )

        if not bank_name or not bank_account_number or amount in (None, ""):
            raise InvalidInputError("Please provide bank name, account number, and amount")

        if isinstance(amount, bool):
            raise InvalidInputError("Invalid amount format")
        try:
            amount_dec = Decimal(str(amount))
        except (InvalidOperation, ValueError) as e:
            raise InvalidInputError("Invalid amount format") from e
        if not amount_dec.is_finite():
            raise InvalidInputError("Invalid amount format")

        minimum = WithdrawalConfig.min_withdrawal()
        if amount_dec < minimum:
            raise InvalidInputError(f"Withdrawal amount must be at least {minimum}", minimum=str(minimum))

        return str(bank_name), str(bank_account_number), WithdrawalConfig.normalize(amount_dec)

    @staticmethod
    def check_funds(account: Account, amount: Decimal):
        available = Decimal(str(account.passive_income or 0))
        if amount > available:
            logger.warning(f"Account {account.id} requested {amount} with only {available} available")
            raise InsufficientFundsError(
                "Insufficient passive income balance",
                requested=str(amount),
                available=str(available),
            )

    @staticmethod
    def has_pending(account_id: int) -> bool:
        return (
            Withdrawal.query.filter_by(account_id=account_id, status=WithdrawalStatus.PENDING.value).first()
            is not None
        )


# ==========================================================
#                  WITHDRAWAL OPERATIONS
# ==========================================================
def create_withdrawal(account_id: int, bank_name, bank_account_number, amount) -> Withdrawal:
    bank_name, bank_account_number, amount_dec = WithdrawalValidator.parse_request(
        bank_name, bank_account_number, amount
    )

    account = db.session.get(Account, account_id)
    if not account:
        raise NotFoundError("User not found", account_id=account_id)

    WithdrawalValidator.check_funds(account, amount_dec)

    if WithdrawalValidator.has_pending(account_id):
        raise ConflictError("You already have a pending withdrawal request")

    withdrawal = Withdrawal(
        account_id=account_id,
        bank_name=bank_name,
        bank_account_number=bank_account_number,
        amount=amount_dec,
        status=WithdrawalStatus.PENDING.value,
    )
    try:
        db.session.add(withdrawal)
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        logger.warning(f"Concurrent withdrawal request refused for {account_id}")
        raise ConflictError("You already have a pending withdrawal request") from e
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to create withdrawal for {account_id}: {e}", exc_info=True)
        raise InternalError("Failed to create withdrawal request") from e

    logger.info(f"Withdrawal {withdrawal.id} requested: account {account_id} amount {amount_dec}")
    return withdrawal


def approve_withdrawal(withdrawal_id: int) -> Withdrawal:
    """
    Claim pending -> approved, re-check funds against the locked account and
    post the withdrawal ledger entry, all in one transaction.
    """
    withdrawal = db.session.get(Withdrawal, withdrawal_id)
    if not withdrawal:
        raise NotFoundError("Withdrawal request not found", withdrawal_id=withdrawal_id)
    if withdrawal.status != WithdrawalStatus.PENDING.value:
        raise InvalidStateError(f"Withdrawal request has already been {withdrawal.status}", status=withdrawal.status)

    try:
        claimed = Withdrawal.query.filter_by(
            id=withdrawal_id, status=WithdrawalStatus.PENDING.value
        ).update(
            {"status": WithdrawalStatus.APPROVED.value, "processed_at": utcnow()},
            synchronize_session=False,
        )
        if claimed != 1:
            db.session.rollback()
            logger.warning(f"Withdrawal {withdrawal_id} was claimed by another approver")
            raise InvalidStateError("Withdrawal request has already been processed")

        db.session.refresh(withdrawal)
        account = lock_account(withdrawal.account_id)
        amount = Decimal(str(withdrawal.amount))

        WithdrawalValidator.check_funds(account, amount)
        post_entry(account, LedgerKind.WITHDRAWAL.value, amount)

        db.session.commit()

    except CommissionError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Approval of withdrawal {withdrawal_id} failed: {e}", exc_info=True)
        raise InternalError("Failed to approve withdrawal") from e

    logger.info(f"Withdrawal {withdrawal_id} approved: {withdrawal.amount} debited from {withdrawal.account_id}")
    return withdrawal


def reject_withdrawal(withdrawal_id: int) -> Withdrawal:
    withdrawal = db.session.get(Withdrawal, withdrawal_id)
    if not withdrawal:
        raise NotFoundError("Withdrawal request not found", withdrawal_id=withdrawal_id)
    if withdrawal.status != WithdrawalStatus.PENDING.value:
        raise InvalidStateError(f"Withdrawal request has already been {withdrawal.status}", status=withdrawal.status)

    try:
        claimed = Withdrawal.query.filter_by(
            id=withdrawal_id, status=WithdrawalStatus.PENDING.value
        ).update(
            {"status": WithdrawalStatus.REJECTED.value, "processed_at": utcnow()},
            synchronize_session=False,
        )
        if claimed != 1:
            db.session.rollback()
            raise InvalidStateError("Withdrawal request has already been processed")
        db.session.commit()
    except CommissionError:
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Rejection of withdrawal {withdrawal_id} failed: {e}", exc_info=True)
        raise InternalError("Failed to reject withdrawal") from e

    db.session.refresh(withdrawal)
    logger.info(f"Withdrawal {withdrawal_id} rejected")
    return withdrawal


def list_user_withdrawals(account_id: int) -> List[Withdrawal]:
    return (
        Withdrawal.query.filter_by(account_id=account_id)
        .order_by(Withdrawal.created_at.desc(), Withdrawal.id.desc())
        .all()
    )


def list_pending_withdrawals(page: int = 1, limit: int = 10) -> Dict:
    """Oldest first, so the admin works the queue in arrival order."""
    page = max(int(page or 1), 1)
    limit = max(int(limit or 10), 1)

    query = Withdrawal.query.filter_by(status=WithdrawalStatus.PENDING.value)
    total = query.count()
    withdrawals = (
        query.order_by(Withdrawal.created_at.asc(), Withdrawal.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    rows = []
    for withdrawal in withdrawals:
        row = withdrawal.to_dict()
        account = withdrawal.account
        row["user"] = {
            "id": account.id,
            "name": account.name,
            "email": account.email,
            "passiveIncome": float(account.passive_income or 0),
        } if account else None
        rows.append(row)

    return {
        "count": len(rows),
        "total": total,
        "page": page,
        "pages": math.ceil(total / limit),
        "withdrawals": rows,
    }
