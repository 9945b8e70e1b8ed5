# commission/activation.py
"""
Plan activation requests.

A pending account is activated by its upline (or by itself when it has no
upline) submitting proof of payment; an admin approves it and the commission
is paid out two levels up:

    sponsor        -> direct commission of the requested plan
    grand-sponsor  -> passive commission of the requested plan

Self-activation pays nobody. Approval is one transaction: the request claim,
the subject's activation and every ledger posting commit together.
"""
import logging
import math
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from extensions import db
from models import (
    Account, AccountStatus, ActivationRequest, RequestStatus, LedgerKind, utcnow,
)
from commission.accounts import get_account, lock_account
from commission.errors import (
    CommissionError, NotFoundError, InvalidStateError, ForbiddenError,
    PlanNotAllowedError, ConflictError, InvalidInputError, InternalError,
)
from commission.ledger import post_entry
from commission.plans import PlanConfigHelper

logger = logging.getLogger(__name__)


def get_pending_request_for(subject_id: int) -> Optional[ActivationRequest]:
    return ActivationRequest.query.filter_by(
        subject_id=subject_id, status=RequestStatus.PENDING.value
    ).first()


# ==========================================================
#                  CREATE
# ==========================================================
def create_activation_request(subject_id: int, sponsor_id: int, plan: str, proof: str) -> ActivationRequest:
    plan = (plan or "").strip().lower()
    proof = (proof or "").strip()

    if not proof:
        raise InvalidInputError("Proof of payment is required")
    if not PlanConfigHelper.is_known_plan(plan):
        raise InvalidInputError(f"Unknown plan '{plan}'", plan=plan)

    subject = db.session.get(Account, subject_id)
    if not subject:
        raise NotFoundError("User not found", subject_id=subject_id)

    if subject.status != AccountStatus.PENDING.value:
        raise InvalidStateError("User is not in pending status", status=subject.status)

    if subject.referrer_id is not None:
        if subject.referrer_id != sponsor_id:
            logger.warning(f"Account {sponsor_id} tried to activate {subject_id} owned by {subject.referrer_id}")
            raise ForbiddenError("Only the referrer can create a request for this user")

        sponsor = get_account(sponsor_id)
        if not sponsor.plan:
            raise InvalidStateError("You must have an active plan to create requests")

        if not PlanConfigHelper.can_sponsor(sponsor.plan, plan):
            raise PlanNotAllowedError(
                f"Your plan ({sponsor.plan}) does not allow referring {plan} users",
                sponsor_plan=sponsor.plan,
                plan=plan,
            )
    elif subject_id != sponsor_id:
        raise ForbiddenError("This user has no referrer. Only they can create their own request")

    if get_pending_request_for(subject_id):
        raise ConflictError("A pending request already exists for this user")

    request = ActivationRequest(
        subject_id=subject_id,
        sponsor_id=sponsor_id,
        proof_reference=proof,
        plan=plan,
        status=RequestStatus.PENDING.value,
    )
    try:
        db.session.add(request)
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        logger.warning(f"Concurrent activation request refused for {subject_id}")
        raise ConflictError("A pending request already exists for this user") from e
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to create activation request for {subject_id}: {e}", exc_info=True)
        raise InternalError("Failed to create request") from e

    logger.info(f"Activation request {request.id} created: subject={subject_id} sponsor={sponsor_id} plan={plan}")
    return request


# ==========================================================
#                  APPROVE / REJECT
# ==========================================================
def approve_activation_request(request_id: int) -> ActivationRequest:
    request = db.session.get(ActivationRequest, request_id)
    if not request:
        raise NotFoundError("Request not found", request_id=request_id)
    if request.status != RequestStatus.PENDING.value:
        raise InvalidStateError("Request has already been processed", status=request.status)

    try:
        # compare-and-set claim: only one approver can move pending -> approved
        claimed = ActivationRequest.query.filter_by(
            id=request_id, status=RequestStatus.PENDING.value
        ).update(
            {"status": RequestStatus.APPROVED.value, "processed_at": utcnow()},
            synchronize_session=False,
        )
        if claimed != 1:
            db.session.rollback()
            logger.warning(f"Activation request {request_id} was claimed by another approver")
            raise InvalidStateError("Request has already been processed")

        db.session.refresh(request)
        direct, passive = PlanConfigHelper.commission_amounts(request.plan)

        subject = lock_account(request.subject_id)
        subject.status = AccountStatus.ACTIVE.value
        subject.plan = request.plan

        if not request.is_self_activation:
            sponsor = lock_account(request.sponsor_id)
            if direct > 0:
                post_entry(sponsor, LedgerKind.DIRECT.value, direct)

            if sponsor.referrer_id is not None and passive > 0:
                grand_sponsor = lock_account(sponsor.referrer_id)
                post_entry(grand_sponsor, LedgerKind.PASSIVE.value, passive)

        db.session.commit()

    except CommissionError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Approval of activation request {request_id} failed: {e}", exc_info=True)
        raise InternalError("Failed to approve request") from e

    logger.info(
        f"Activation request {request_id} approved: account {request.subject_id} now on {request.plan}"
        + (" (self-activation, no commission)" if request.is_self_activation else "")
    )
    return request


def reject_activation_request(request_id: int) -> None:
    request = db.session.get(ActivationRequest, request_id)
    if not request:
        raise NotFoundError("Request not found", request_id=request_id)
    if request.status != RequestStatus.PENDING.value:
        raise InvalidStateError("Request has already been processed", status=request.status)

    try:
        deleted = ActivationRequest.query.filter_by(
            id=request_id, status=RequestStatus.PENDING.value
        ).delete(synchronize_session=False)
        if deleted != 1:
            db.session.rollback()
            raise InvalidStateError("Request has already been processed")
        db.session.commit()
    except CommissionError:
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Rejection of activation request {request_id} failed: {e}", exc_info=True)
        raise InternalError("Failed to reject request") from e

    db.session.expunge(request)
    logger.info(f"Activation request {request_id} rejected and removed")


# ==========================================================
#                  ADMIN LISTING
# ==========================================================
def list_activation_requests(status: str = RequestStatus.PENDING.value, page: int = 1, limit: int = 10) -> dict:
    """Newest first, each row carrying what the admin should see on the proof."""
    page = max(int(page or 1), 1)
    limit = max(int(limit or 10), 1)

    query = ActivationRequest.query
    if status and status != "all":
        query = query.filter(ActivationRequest.status == status)

    total = query.count()
    requests = (
        query.order_by(ActivationRequest.created_at.desc(), ActivationRequest.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    rows = []
    for request in requests:
        row = request.to_dict()
        row["expectedPayment"] = float(
            PlanConfigHelper.expected_payment(request.plan, request.is_self_activation)
        )
        row["subject"] = _summary(request.subject)
        row["sponsor"] = _summary(request.sponsor)
        rows.append(row)

    return {
        "count": len(rows),
        "total": total,
        "page": page,
        "pages": math.ceil(total / limit),
        "requests": rows,
    }


def _summary(account: Optional[Account]) -> Optional[dict]:
    if account is None:
        return None
    return {
        "id": account.id,
        "name": account.name,
        "email": account.email,
        "referralCode": account.referral_code,
    }
