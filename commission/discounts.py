# commission/discounts.py
import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import Discount
from commission.errors import InvalidInputError, InternalError
from commission.plans import PlanConfigHelper

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def get_discount_settings() -> Discount:
    """The single settings row, created disabled on first read."""
    discount = Discount.query.order_by(Discount.id).first()
    if discount is None:
        discount = Discount(
            enabled=False,
            amounts={plan: "0" for plan in PlanConfigHelper.plan_names()},
        )
        try:
            db.session.add(discount)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Failed to create default discount settings: {e}", exc_info=True)
            raise InternalError("Failed to fetch discounts") from e
    return discount


def update_discount_settings(enabled: Optional[bool] = None, discounts: Optional[Dict[str, object]] = None) -> Discount:
    """
    Partial update: omitted fields keep their stored value.
    Each amount must lie in [0, max_discount] for its plan.
    """
    validated = {}
    for plan, raw in (discounts or {}).items():
        if not PlanConfigHelper.is_known_plan(plan):
            raise InvalidInputError(f"Unknown plan '{plan}'", plan=plan)
        try:
            amount = Decimal(str(raw))
        except (InvalidOperation, ValueError) as e:
            raise InvalidInputError(f"Invalid discount for {plan}", plan=plan) from e

        if amount < 0:
            raise InvalidInputError("Discount amounts cannot be negative", plan=plan)

        cap = PlanConfigHelper.pricing_for(plan)["max_discount"]
        if amount > cap:
            raise InvalidInputError(f"{plan.capitalize()} discount cannot exceed {cap}", plan=plan, max=str(cap))
        validated[plan] = str(amount)

    discount = get_discount_settings()
    try:
        if enabled is not None:
            discount.enabled = bool(enabled)
        if validated:
            # reassign so the JSON column registers the change
            amounts = dict(discount.amounts or {})
            amounts.update(validated)
            discount.amounts = amounts
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to update discount settings: {e}", exc_info=True)
        raise InternalError("Failed to update discounts") from e

    logger.info(f"Discount settings updated: enabled={discount.enabled} amounts={discount.amounts}")
    return discount


def discount_for(plan: str) -> Decimal:
    """Discount currently offered on upgrades to `plan`, 0 when disabled."""
    discount = get_discount_settings()
    if not discount.enabled:
        return ZERO
    return Decimal(str((discount.amounts or {}).get(plan, "0")))
