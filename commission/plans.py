# commission/plans.py
from decimal import Decimal
from typing import Dict, Any, List, Tuple
from flask import current_app

from commission.errors import InvalidInputError


class PlanConfigHelper:
    """
    Plan pricing and sponsorship hierarchy, read from app config (PLAN_PRICING).

    A plan may sponsor any plan whose rank is lower than or equal to its own:
    knowic -> knowic, learnic -> knowic/learnic, masteric -> all.
    Gross price is used for revenue reporting only; commissions use
    the `direct` and `passive` amounts.
    """

    FIELDS = ("price", "direct", "passive", "max_discount")

    @staticmethod
    def get_plan_table() -> Dict[str, Dict[str, Any]]:
        table = {}
        for name, raw in current_app.config["PLAN_PRICING"].items():
            entry = {"rank": int(raw["rank"])}
            for field in PlanConfigHelper.FIELDS:
                entry[field] = Decimal(str(raw.get(field, "0")))
            table[name] = entry
        return table

    @staticmethod
    def plan_names() -> List[str]:
        table = PlanConfigHelper.get_plan_table()
        return sorted(table, key=lambda name: table[name]["rank"])

    @staticmethod
    def is_known_plan(plan: str) -> bool:
        return plan in current_app.config["PLAN_PRICING"]

    @staticmethod
    def pricing_for(plan: str) -> Dict[str, Any]:
        table = PlanConfigHelper.get_plan_table()
        if plan not in table:
            raise InvalidInputError(f"Unknown plan '{plan}'", plan=plan)
        return table[plan]

    @staticmethod
    def plan_rank(plan: str) -> int:
        return PlanConfigHelper.pricing_for(plan)["rank"]

    @staticmethod
    def allowed_plans(sponsor_plan: str) -> List[str]:
        """Plans a sponsor on `sponsor_plan` may bring in (empty without a plan)."""
        if not sponsor_plan:
            return []
        table = PlanConfigHelper.get_plan_table()
        if sponsor_plan not in table:
            return []
        sponsor_rank = table[sponsor_plan]["rank"]
        return [name for name in PlanConfigHelper.plan_names() if table[name]["rank"] <= sponsor_rank]

    @staticmethod
    def can_sponsor(sponsor_plan: str, plan: str) -> bool:
        return plan in PlanConfigHelper.allowed_plans(sponsor_plan)

    @staticmethod
    def commission_amounts(plan: str) -> Tuple[Decimal, Decimal]:
        pricing = PlanConfigHelper.pricing_for(plan)
        return pricing["direct"], pricing["passive"]

    @staticmethod
    def expected_payment(plan: str, self_activation: bool) -> Decimal:
        """What the admin should see on the proof: full price when self-activated,
        otherwise the price minus the sponsor's direct commission."""
        pricing = PlanConfigHelper.pricing_for(plan)
        if self_activation:
            return pricing["price"]
        return pricing["price"] - pricing["direct"]

    @staticmethod
    def validate_plan_configuration() -> Tuple[bool, str]:
        """Check ranks are unique and commissions fit inside the price."""
        try:
            table = PlanConfigHelper.get_plan_table()
            if not table:
                return False, "No plans configured"

            ranks = [entry["rank"] for entry in table.values()]
            if len(set(ranks)) != len(ranks):
                return False, "Plan ranks must be unique"

            for name, entry in table.items():
                if entry["direct"] < 0 or entry["passive"] < 0:
                    return False, f"Plan {name} has a negative commission"
                if entry["direct"] + entry["passive"] > entry["price"]:
                    return False, f"Plan {name} pays out more than its price"

            return True, f"Plan configuration valid: {len(table)} plans"

        except (KeyError, ValueError, ArithmeticError) as e:
            return False, f"Configuration validation error: {str(e)}"
