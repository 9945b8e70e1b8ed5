# commission/referral_tree.py
import logging
from typing import List, Optional, Tuple

from extensions import db
from models import Account

logger = logging.getLogger(__name__)


class ReferralTreeHelper:
    """
    Referral forest navigation over the `accounts.referrer_id` parent pointer.
    Children are always found through the indexed parent column, never
    through lists stored on the parent.
    """

    @staticmethod
    def get_upline(account: Account) -> Optional[Account]:
        if account is None or account.referrer_id is None:
            return None
        return db.session.get(Account, account.referrer_id)

    @staticmethod
    def get_grand_sponsor(account: Account) -> Optional[Account]:
        return ReferralTreeHelper.get_upline(ReferralTreeHelper.get_upline(account))

    @staticmethod
    def ancestor_ids(account_id: int, max_depth: Optional[int] = None) -> List[int]:
        """
        Upline chain of `account_id`, nearest first, up to the root.
        `max_depth` limits the walk for reporting; revisits end it.
        """
        chain = []
        seen = {account_id}
        current = db.session.get(Account, account_id)

        while current is not None and current.referrer_id is not None:
            if max_depth is not None and len(chain) >= max_depth:
                break
            parent_id = current.referrer_id
            if parent_id in seen:
                logger.error(f"Referral cycle detected above account {account_id} at {parent_id}")
                break
            chain.append(parent_id)
            seen.add(parent_id)
            current = db.session.get(Account, parent_id)

        return chain

    @staticmethod
    def is_descendant(ancestor_id: int, account_id: int) -> bool:
        """True if `ancestor_id` sits somewhere above `account_id` (depth >= 1)."""
        return ancestor_id in ReferralTreeHelper.ancestor_ids(account_id)

    @staticmethod
    def would_create_cycle(subject_id: int, new_sponsor_id: int) -> bool:
        """Re-parenting `subject_id` under `new_sponsor_id` closes a loop when the
        sponsor is the subject itself or one of its descendants."""
        if subject_id == new_sponsor_id:
            return True
        return ReferralTreeHelper.is_descendant(subject_id, new_sponsor_id)

    @staticmethod
    def descendant_ids(account_id: int, max_depth: int = 20) -> List[Tuple[int, int]]:
        """
        Breadth-first walk down the forest.
        Returns (account_id, level) pairs, level 1 being direct referrals.
        """
        result = []
        seen = {account_id}
        frontier = [account_id]
        level = 0

        while frontier and level < max_depth:
            level += 1
            rows = (
                db.session.query(Account.id)
                .filter(Account.referrer_id.in_(frontier))
                .order_by(Account.id)
                .all()
            )
            frontier = []
            for (child_id,) in rows:
                if child_id in seen:
                    continue
                seen.add(child_id)
                frontier.append(child_id)
                result.append((child_id, level))

        return result

    @staticmethod
    def get_network_summary(account_id: int) -> dict:
        descendants = ReferralTreeHelper.descendant_ids(account_id)
        levels = {}
        for _, level in descendants:
            levels[level] = levels.get(level, 0) + 1
        return {
            "accountId": account_id,
            "upline": ReferralTreeHelper.ancestor_ids(account_id, max_depth=2),
            "directReferrals": levels.get(1, 0),
            "networkSize": len(descendants),
            "levels": levels,
        }
