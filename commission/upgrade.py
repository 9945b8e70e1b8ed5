# commission/upgrade.py
"""
Plan upgrades: subject -> new sponsor -> admin.

    created --(sponsor approves with proof)--> sponsor_approved --(admin)--> approved

Rejection at either step deletes the request. Final approval moves the
subject under the new sponsor, which re-parents a node in the referral
forest, so the cycle guard runs both at creation and at approval.
"""
import logging
from typing import List, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from extensions import db
from models import Account, UpgradeRequest, UpgradeStatus, LedgerKind, utcnow
from commission.accounts import find_by_referral_code, lock_account
from commission.discounts import discount_for
from commission.errors import (
    CommissionError, NotFoundError, InvalidStateError, ForbiddenError,
    PlanNotAllowedError, ConflictError, InvalidInputError, InternalError,
)
from commission.ledger import post_entry
from commission.plans import PlanConfigHelper
from commission.referral_tree import ReferralTreeHelper

logger = logging.getLogger(__name__)

OPEN_STATUSES = (UpgradeStatus.CREATED.value, UpgradeStatus.SPONSOR_APPROVED.value)


def get_open_upgrade_for(subject_id: int) -> Optional[UpgradeRequest]:
    return UpgradeRequest.query.filter(
        UpgradeRequest.subject_id == subject_id,
        UpgradeRequest.status.in_(OPEN_STATUSES),
    ).first()


def list_upgrades_for_sponsor(sponsor_id: int) -> List[UpgradeRequest]:
    """Requests waiting on this sponsor's proof."""
    return (
        UpgradeRequest.query.filter_by(new_sponsor_id=sponsor_id, status=UpgradeStatus.CREATED.value)
        .order_by(UpgradeRequest.created_at.desc())
        .all()
    )


def list_upgrades_for_admin() -> List[UpgradeRequest]:
    return (
        UpgradeRequest.query.filter_by(status=UpgradeStatus.SPONSOR_APPROVED.value)
        .order_by(UpgradeRequest.created_at.desc())
        .all()
    )


def _get_request(request_id: int) -> UpgradeRequest:
    upgrade = db.session.get(UpgradeRequest, request_id)
    if not upgrade:
        raise NotFoundError("Upgrade request not found", request_id=request_id)
    return upgrade


# ==========================================================
#                  SUBJECT: CREATE
# ==========================================================
def create_upgrade_request(subject_id: int, new_plan: str, referral_code: str) -> UpgradeRequest:
    new_plan = (new_plan or "").strip().lower()
    referral_code = (referral_code or "").strip().upper()

    subject = db.session.get(Account, subject_id)
    if not subject:
        raise NotFoundError("User not found", subject_id=subject_id)
    if not subject.plan:
        raise InvalidStateError("You must have an active plan before upgrading")

    if not PlanConfigHelper.is_known_plan(new_plan):
        raise InvalidInputError(f"Unknown plan '{new_plan}'", plan=new_plan)
    if new_plan == subject.plan:
        raise InvalidInputError("You are already on this plan")
    if PlanConfigHelper.plan_rank(new_plan) <= PlanConfigHelper.plan_rank(subject.plan):
        raise InvalidInputError("You can only upgrade to a higher plan")

    if not referral_code:
        raise InvalidInputError("Referral code is required")
    new_sponsor = find_by_referral_code(referral_code)
    if not new_sponsor:
        raise InvalidInputError("Invalid referral code", referral_code=referral_code)

    if not new_sponsor.plan:
        raise InvalidStateError("The user of this referral code does not have an active plan yet")
    if not PlanConfigHelper.can_sponsor(new_sponsor.plan, new_plan):
        raise PlanNotAllowedError(
            f"The user of this referral code has {new_sponsor.plan} plan, "
            f"they need to upgrade to {new_plan} plan to be the referrer of your upgraded status",
            sponsor_plan=new_sponsor.plan,
            plan=new_plan,
        )

    if ReferralTreeHelper.would_create_cycle(subject.id, new_sponsor.id):
        logger.warning(f"Upgrade for {subject.id} refused: sponsor {new_sponsor.id} is in its downline")
        raise InvalidInputError("You cannot use the referral code of yourself or someone in your network")

    if get_open_upgrade_for(subject_id):
        raise ConflictError("You already have a pending upgrade request")

    upgrade = UpgradeRequest(
        subject_id=subject.id,
        new_sponsor_id=new_sponsor.id,
        referral_code=referral_code,
        previous_plan=subject.plan,
        new_plan=new_plan,
        status=UpgradeStatus.CREATED.value,
    )
    try:
        db.session.add(upgrade)
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        logger.warning(f"Concurrent upgrade request refused for {subject_id}")
        raise ConflictError("You already have a pending upgrade request") from e
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to create upgrade request for {subject_id}: {e}", exc_info=True)
        raise InternalError("Failed to create upgrade request") from e

    logger.info(f"Upgrade request {upgrade.id}: {subject.id} {subject.plan} -> {new_plan} via {new_sponsor.id}")
    return upgrade


# ==========================================================
#                  SPONSOR STEP
# ==========================================================
def _check_sponsor_step(upgrade: UpgradeRequest, sponsor_id: int):
    if upgrade.new_sponsor_id != sponsor_id:
        raise ForbiddenError("You are not authorized to process this request")
    if upgrade.status != UpgradeStatus.CREATED.value:
        raise InvalidStateError("This request has already been processed", status=upgrade.status)


def sponsor_approve_upgrade(request_id: int, sponsor_id: int, proof: str) -> UpgradeRequest:
    upgrade = _get_request(request_id)
    _check_sponsor_step(upgrade, sponsor_id)

    proof = (proof or "").strip()
    if not proof:
        raise InvalidInputError("Payment proof is required")

    original_price = PlanConfigHelper.expected_payment(upgrade.new_plan, self_activation=False)
    discount = discount_for(upgrade.new_plan)

    try:
        claimed = UpgradeRequest.query.filter_by(
            id=request_id, status=UpgradeStatus.CREATED.value
        ).update(
            {
                "status": UpgradeStatus.SPONSOR_APPROVED.value,
                "proof_reference": proof,
                "discounted": discount > 0,
                "discount_amount": discount,
                "original_price": original_price,
                "final_price": original_price - discount,
            },
            synchronize_session=False,
        )
        if claimed != 1:
            db.session.rollback()
            raise InvalidStateError("This request has already been processed")
        db.session.commit()
    except CommissionError:
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Sponsor approval of upgrade {request_id} failed: {e}", exc_info=True)
        raise InternalError("Failed to approve upgrade request") from e

    db.session.refresh(upgrade)
    logger.info(
        f"Upgrade {request_id} approved by sponsor {sponsor_id}"
        + (f" with discount {discount}" if discount > 0 else "")
    )
    return upgrade


def sponsor_reject_upgrade(request_id: int, sponsor_id: int) -> None:
    upgrade = _get_request(request_id)
    _check_sponsor_step(upgrade, sponsor_id)
    _delete_in_status(upgrade, UpgradeStatus.CREATED.value)
    logger.info(f"Upgrade {request_id} rejected by sponsor {sponsor_id}")


# ==========================================================
#                  ADMIN STEP
# ==========================================================
def approve_upgrade_request(request_id: int) -> UpgradeRequest:
    upgrade = _get_request(request_id)
    if upgrade.status != UpgradeStatus.SPONSOR_APPROVED.value:
        raise InvalidStateError(
            "This request has already been processed or not yet approved by referrer",
            status=upgrade.status,
        )

    suppress_passive = upgrade.discounted and current_app.config.get("SUPPRESS_PASSIVE_ON_DISCOUNT", True)

    try:
        claimed = UpgradeRequest.query.filter_by(
            id=request_id, status=UpgradeStatus.SPONSOR_APPROVED.value
        ).update(
            {"status": UpgradeStatus.APPROVED.value, "processed_at": utcnow()},
            synchronize_session=False,
        )
        if claimed != 1:
            db.session.rollback()
            logger.warning(f"Upgrade request {request_id} was claimed by another approver")
            raise InvalidStateError("This request has already been processed")

        db.session.refresh(upgrade)

        # the forest may have changed since the request was created
        if ReferralTreeHelper.would_create_cycle(upgrade.subject_id, upgrade.new_sponsor_id):
            raise InvalidInputError("New sponsor is now part of the subject's network")

        direct, passive = PlanConfigHelper.commission_amounts(upgrade.new_plan)

        subject = lock_account(upgrade.subject_id)
        new_sponsor = lock_account(upgrade.new_sponsor_id)

        subject.plan = upgrade.new_plan
        subject.referrer_id = new_sponsor.id

        if direct > 0:
            post_entry(new_sponsor, LedgerKind.DIRECT.value, direct)

        if new_sponsor.referrer_id is not None and passive > 0 and not suppress_passive:
            grand_sponsor = lock_account(new_sponsor.referrer_id)
            post_entry(grand_sponsor, LedgerKind.PASSIVE.value, passive)

        db.session.commit()

    except CommissionError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Approval of upgrade request {request_id} failed: {e}", exc_info=True)
        raise InternalError("Failed to approve upgrade request") from e

    logger.info(
        f"Upgrade {request_id} approved: account {upgrade.subject_id} now on {upgrade.new_plan} "
        f"under {upgrade.new_sponsor_id}" + (" (passive suppressed, discounted)" if suppress_passive else "")
    )
    return upgrade


def reject_upgrade_request(request_id: int) -> None:
    upgrade = _get_request(request_id)
    if upgrade.status != UpgradeStatus.SPONSOR_APPROVED.value:
        raise InvalidStateError(
            "This request has already been processed or not yet approved by referrer",
            status=upgrade.status,
        )
    _delete_in_status(upgrade, UpgradeStatus.SPONSOR_APPROVED.value)
    logger.info(f"Upgrade {request_id} rejected by admin")


def _delete_in_status(upgrade: UpgradeRequest, status: str):
    try:
        deleted = UpgradeRequest.query.filter_by(id=upgrade.id, status=status).delete(
            synchronize_session=False
        )
        if deleted != 1:
            db.session.rollback()
            raise InvalidStateError("This request has already been processed")
        db.session.commit()
    except CommissionError:
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to delete upgrade request {upgrade.id}: {e}", exc_info=True)
        raise InternalError("Failed to reject upgrade request") from e
    db.session.expunge(upgrade)
