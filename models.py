# models.py - Flask-SQLAlchemy models for accounts, the ledger, requests and leaderboard snapshots
from datetime import datetime, timezone
from decimal import Decimal
import enum
from sqlalchemy import UniqueConstraint, Index, event, text
from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash
from extensions import db


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ===========================================================
# ENUM DEFINITIONS
# ===========================================================

class Role(enum.Enum):
    USER = "user"
    ADMIN = "admin"


class AccountStatus(enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"


class LedgerKind(enum.Enum):
    DIRECT = "direct"
    PASSIVE = "passive"
    WITHDRAWAL = "withdrawal"


class RequestStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class UpgradeStatus(enum.Enum):
    CREATED = "created"
    SPONSOR_APPROVED = "sponsor_approved"
    APPROVED = "approved"


class WithdrawalStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# ===========================================================
# BASE MIXIN FOR COMMON FIELDS
# ===========================================================

class BaseMixin:
    """Provides created_at and updated_at timestamps to inheriting models."""
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)


def _money(value):
    return float(value) if value is not None else 0.0


def _iso(value):
    return value.isoformat() if value else None


# ===========================================================
# ACCOUNTS
# ===========================================================

class Account(db.Model, BaseMixin, UserMixin):
    """Program member. Cached income fields are a projection of the ledger."""
    __tablename__ = "accounts"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=Role.USER.value, index=True)

    balance = db.Column(db.Numeric(18, 2), nullable=False, default=Decimal("0.00"), server_default=text("0"))
    direct_income = db.Column(db.Numeric(18, 2), nullable=False, default=Decimal("0.00"), server_default=text("0"))
    passive_income = db.Column(db.Numeric(18, 2), nullable=False, default=Decimal("0.00"), server_default=text("0"))

    referral_code = db.Column(db.String(20), unique=True, nullable=False)
    referrer_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True)

    status = db.Column(db.String(20), nullable=False, default=AccountStatus.PENDING.value)
    plan = db.Column(db.String(20), nullable=True)

    referrer = db.relationship("Account", remote_side=[id], foreign_keys=[referrer_id])

    __table_args__ = (
        Index("idx_account_referral_code", "referral_code"),
        Index("idx_account_balance", "balance"),
    )

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "status": self.status,
            "plan": self.plan,
            "referralCode": self.referral_code,
            "referrerId": self.referrer_id,
            "balance": _money(self.balance),
            "directIncome": _money(self.direct_income),
            "passiveIncome": _money(self.passive_income),
            "createdAt": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Account {self.id} {self.email}>"


# ===========================================================
# LEDGER
# ===========================================================

class LedgerEntry(db.Model):
    """Append-only monetary event. Amount is a positive magnitude; kind gives the sign."""
    __tablename__ = "ledger_entries"

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = db.Column(db.String(20), nullable=False)
    amount = db.Column(db.Numeric(18, 2), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

    account = db.relationship("Account", backref=db.backref("ledger_entries", lazy="dynamic", passive_deletes=True))

    __table_args__ = (
        db.CheckConstraint("amount > 0", name="chk_ledger_amount_positive"),
        Index("idx_ledger_account_created", "account_id", "created_at"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "accountId": self.account_id,
            "type": self.kind,
            "amount": _money(self.amount),
            "createdAt": _iso(self.created_at),
        }


@event.listens_for(LedgerEntry, "before_update")
def _refuse_ledger_update(mapper, connection, target):
    raise ValueError(f"Ledger entry {target.id} is immutable")


# ===========================================================
# ACTIVATION & UPGRADE REQUESTS
# ===========================================================

class ActivationRequest(db.Model, BaseMixin):
    __tablename__ = "activation_requests"
    # one pending request per subject
    __table_args__ = (
        Index(
            "uq_activation_pending_subject", "subject_id", unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    subject_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    sponsor_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    proof_reference = db.Column(db.String(500), nullable=False)
    plan = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=RequestStatus.PENDING.value, index=True)
    processed_at = db.Column(db.DateTime, nullable=True)

    subject = db.relationship("Account", foreign_keys=[subject_id])
    sponsor = db.relationship("Account", foreign_keys=[sponsor_id])

    @property
    def is_self_activation(self) -> bool:
        return self.subject_id == self.sponsor_id

    def to_dict(self):
        return {
            "id": self.id,
            "subjectId": self.subject_id,
            "sponsorId": self.sponsor_id,
            "proof": self.proof_reference,
            "plan": self.plan,
            "status": self.status,
            "isSelfActivation": self.is_self_activation,
            "createdAt": _iso(self.created_at),
            "processedAt": _iso(self.processed_at),
        }


class UpgradeRequest(db.Model, BaseMixin):
    __tablename__ = "upgrade_requests"
    # one open (created / sponsor_approved) upgrade per subject
    __table_args__ = (
        Index(
            "uq_upgrade_open_subject", "subject_id", unique=True,
            sqlite_where=text("status IN ('created', 'sponsor_approved')"),
            postgresql_where=text("status IN ('created', 'sponsor_approved')"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    subject_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    new_sponsor_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    referral_code = db.Column(db.String(20), nullable=False)
    previous_plan = db.Column(db.String(20), nullable=False)
    new_plan = db.Column(db.String(20), nullable=False)
    proof_reference = db.Column(db.String(500), nullable=True)
    status = db.Column(db.String(20), nullable=False, default=UpgradeStatus.CREATED.value, index=True)

    discounted = db.Column(db.Boolean, nullable=False, default=False)
    discount_amount = db.Column(db.Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    original_price = db.Column(db.Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    final_price = db.Column(db.Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    processed_at = db.Column(db.DateTime, nullable=True)

    subject = db.relationship("Account", foreign_keys=[subject_id])
    new_sponsor = db.relationship("Account", foreign_keys=[new_sponsor_id])

    def to_dict(self):
        return {
            "id": self.id,
            "subjectId": self.subject_id,
            "newSponsorId": self.new_sponsor_id,
            "referralCode": self.referral_code,
            "previousPlan": self.previous_plan,
            "newPlan": self.new_plan,
            "proof": self.proof_reference,
            "status": self.status,
            "discounted": self.discounted,
            "discountAmount": _money(self.discount_amount),
            "originalPrice": _money(self.original_price),
            "finalPrice": _money(self.final_price),
            "createdAt": _iso(self.created_at),
            "processedAt": _iso(self.processed_at),
        }


class Discount(db.Model, BaseMixin):
    """Singleton row holding the discount currently offered on upgrades."""
    __tablename__ = "discounts"

    id = db.Column(db.Integer, primary_key=True)
    enabled = db.Column(db.Boolean, nullable=False, default=False)
    amounts = db.Column(db.JSON, nullable=False, default=dict)

    def to_dict(self):
        return {"enabled": self.enabled, "amounts": dict(self.amounts or {})}


# ===========================================================
# WITHDRAWALS
# ===========================================================

class Withdrawal(db.Model, BaseMixin):
    __tablename__ = "withdrawals"
    # one pending withdrawal per account
    __table_args__ = (
        Index(
            "uq_withdrawal_pending_account", "account_id", unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    bank_name = db.Column(db.String(120), nullable=False)
    bank_account_number = db.Column(db.String(64), nullable=False)
    amount = db.Column(db.Numeric(18, 2), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=WithdrawalStatus.PENDING.value, index=True)
    processed_at = db.Column(db.DateTime, nullable=True)

    account = db.relationship("Account", backref=db.backref("withdrawals", lazy="dynamic", passive_deletes=True))

    def to_dict(self):
        return {
            "id": self.id,
            "accountId": self.account_id,
            "bankName": self.bank_name,
            "bankAccountNumber": self.bank_account_number,
            "amount": _money(self.amount),
            "status": self.status,
            "createdAt": _iso(self.created_at),
            "processedAt": _iso(self.processed_at),
        }


# ===========================================================
# LEADERBOARD SNAPSHOTS & JOB WATERMARK
# ===========================================================

class StatMixin:
    """Per-account total for one period, keyed by the period's anchor date."""
    id = db.Column(db.Integer, primary_key=True)
    period_start = db.Column(db.Date, nullable=False, index=True)
    total = db.Column(db.Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    created_at = db.Column(db.DateTime, default=utcnow)

    @classmethod
    def _account_fk(cls):
        return db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)


class DailyStat(db.Model, StatMixin):
    __tablename__ = "daily_stats"
    account_id = StatMixin._account_fk()
    __table_args__ = (UniqueConstraint("account_id", "period_start", name="uq_daily_stat"),)


class WeeklyStat(db.Model, StatMixin):
    __tablename__ = "weekly_stats"
    account_id = StatMixin._account_fk()
    __table_args__ = (UniqueConstraint("account_id", "period_start", name="uq_weekly_stat"),)


class MonthlyStat(db.Model, StatMixin):
    __tablename__ = "monthly_stats"
    account_id = StatMixin._account_fk()
    __table_args__ = (UniqueConstraint("account_id", "period_start", name="uq_monthly_stat"),)


STAT_MODELS = {
    "daily": DailyStat,
    "weekly": WeeklyStat,
    "monthly": MonthlyStat,
}


class JobMeta(db.Model, BaseMixin):
    __tablename__ = "job_meta"

    id = db.Column(db.Integer, primary_key=True)
    job = db.Column(db.String(64), unique=True, nullable=False)
    last_processed_at = db.Column(db.DateTime, nullable=False)
