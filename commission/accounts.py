# commission/accounts.py
import re
import string
import secrets
import logging
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from extensions import db
from models import (
    Account, AccountStatus, Role, LedgerEntry, ActivationRequest,
    UpgradeRequest, Withdrawal, STAT_MODELS,
)
from commission.errors import (
    InvalidInputError, NotFoundError, ConflictError, InternalError,
)

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
REFERRAL_CODE_LENGTH = 8
MIN_PASSWORD_LENGTH = 6


def validate_email(email: str) -> bool:
    return EMAIL_PATTERN.match(email or "") is not None


def generate_referral_code(length: int = REFERRAL_CODE_LENGTH) -> str:
    chars = string.ascii_uppercase + string.digits
    for _ in range(10):
        code = "".join(secrets.choice(chars) for _ in range(length))
        if not Account.query.filter_by(referral_code=code).first():
            return code
    # unique constraint catches the unlikely collision
    return "".join(secrets.choice(chars) for _ in range(length))


# =============================================================
#   LOOKUPS
# =============================================================

def get_account(account_id: int) -> Account:
    account = db.session.get(Account, account_id) if account_id is not None else None
    if not account:
        raise NotFoundError(f"Account {account_id} not found", account_id=account_id)
    return account


def lock_account(account_id: int) -> Account:
    """Reload an account for update inside the current transaction (row lock where supported)."""
    account = (
        Account.query.filter_by(id=account_id)
        .populate_existing()
        .with_for_update()
        .first()
    )
    if not account:
        raise NotFoundError(f"Account {account_id} not found", account_id=account_id)
    return account


def find_by_referral_code(code: str) -> Optional[Account]:
    if not code:
        return None
    return Account.query.filter_by(referral_code=code.strip().upper()).first()


def find_by_email(email: str) -> Optional[Account]:
    if not email:
        return None
    return Account.query.filter_by(email=email.strip().lower()).first()


def referral_count(account_id: int) -> int:
    return Account.query.filter_by(referrer_id=account_id).count()


def list_referrals(account_id: int) -> List[Account]:
    """Direct children, found through the referrer_id index."""
    return (
        Account.query.filter_by(referrer_id=account_id)
        .order_by(Account.created_at.asc(), Account.id.asc())
        .all()
    )


# =============================================================
#   CREATE / DELETE
# =============================================================

def create_account(name: str, email: str, password: str,
                   referral_code: str = None, role: str = Role.USER.value) -> Account:
    """
    Sign a new member up, optionally under the owner of `referral_code`.
    New accounts start pending with no plan and zero balances.
    """
    name = (name or "").strip()
    email = (email or "").strip().lower()
    referral_code = (referral_code or "").strip().upper()

    if not name or not email or not password:
        raise InvalidInputError("Name, email and password are required")
    if not validate_email(email):
        raise InvalidInputError("Invalid email address", email=email)
    if len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidInputError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if role not in (Role.USER.value, Role.ADMIN.value):
        raise InvalidInputError(f"Unknown role '{role}'", role=role)

    if find_by_email(email):
        raise ConflictError("Email already registered", email=email)

    referrer = None
    if referral_code:
        referrer = find_by_referral_code(referral_code)
        if not referrer:
            raise InvalidInputError("Invalid referral code", referral_code=referral_code)

    account = Account(
        name=name,
        email=email,
        role=role,
        referral_code=generate_referral_code(),
        referrer_id=referrer.id if referrer else None,
        status=AccountStatus.PENDING.value,
        plan=None,
    )
    account.set_password(password)

    try:
        db.session.add(account)
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        logger.warning(f"Signup conflict for {email}: {e}")
        raise ConflictError("Email already registered", email=email) from e
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to create account {email}: {e}", exc_info=True)
        raise InternalError("Failed to create account") from e

    logger.info(
        f"Account {account.id} created"
        + (f" under referrer {referrer.id}" if referrer else " without referrer")
    )
    return account


def delete_account(account_id: int) -> None:
    """
    Admin removal. Children lose their upline pointer; everything the account
    owns (requests as subject or sponsor, withdrawals, ledger entries,
    leaderboard rows) goes with it.
    """
    account = get_account(account_id)

    try:
        orphaned = Account.query.filter_by(referrer_id=account_id).update(
            {Account.referrer_id: None}, synchronize_session=False
        )
        ActivationRequest.query.filter(
            or_(ActivationRequest.subject_id == account_id, ActivationRequest.sponsor_id == account_id)
        ).delete(synchronize_session=False)
        UpgradeRequest.query.filter(
            or_(UpgradeRequest.subject_id == account_id, UpgradeRequest.new_sponsor_id == account_id)
        ).delete(synchronize_session=False)
        Withdrawal.query.filter_by(account_id=account_id).delete(synchronize_session=False)
        LedgerEntry.query.filter_by(account_id=account_id).delete(synchronize_session=False)
        for model in STAT_MODELS.values():
            model.query.filter_by(account_id=account_id).delete(synchronize_session=False)

        db.session.delete(account)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to delete account {account_id}: {e}", exc_info=True)
        raise InternalError("Failed to delete account") from e

    # bulk updates bypass the identity map
    db.session.expire_all()
    logger.info(f"Account {account_id} deleted, {orphaned} referrals detached")
