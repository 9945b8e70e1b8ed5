# tests/test_ledger.py
from decimal import Decimal

import pytest

from extensions import db
from models import (
    Account, LedgerEntry, ActivationRequest, Withdrawal, DailyStat, JobMeta,
)
from commission.accounts import (
    create_account, delete_account, find_by_referral_code, referral_count, list_referrals,
)
from commission.activation import create_activation_request
from commission.errors import (
    ConflictError, InvalidInputError, NotFoundError,
)
from commission.ledger import (
    signed_amount, post_entry, derive_balances, reconcile_account, reconcile_all, wipe_ledger,
)
from commission.plans import PlanConfigHelper
from commission.referral_tree import ReferralTreeHelper
from blueprints.withdraw_helpers import create_withdrawal
from leaderboard.aggregator import run_incremental
from helpers import fresh, entries_for, assert_matches_ledger


class TestSignedAmounts:

    def test_signs_by_kind(self):
        assert signed_amount("direct", 16) == Decimal("16")
        assert signed_amount("passive", "2") == Decimal("2")
        assert signed_amount("withdrawal", 5) == Decimal("-5")

    def test_unknown_kind(self):
        with pytest.raises(InvalidInputError):
            signed_amount("bonus", 1)

    @pytest.mark.parametrize("amount", [0, -3])
    def test_post_entry_needs_positive_amount(self, make_account, amount):
        account = make_account("a")
        with pytest.raises(InvalidInputError):
            post_entry(account, "direct", amount)


class TestReconciliation:

    def test_balance_is_signed_ledger_sum(self, make_account, post):
        account = make_account("a", plan="knowic")
        post(account, "direct", 16)
        post(account, "passive", 40)
        post(account, "withdrawal", 30)

        derived = derive_balances(account.id)
        assert derived == {
            "direct_income": Decimal("16"),
            "passive_income": Decimal("10"),
            "balance": Decimal("26"),
        }
        assert_matches_ledger(account)

    def test_reconcile_overwrites_drifted_cache(self, make_account, post):
        account = make_account("a", plan="knowic")
        post(account, "direct", 16)
        account = fresh(account)
        account.balance = Decimal("999")
        account.passive_income = Decimal("7")
        db.session.commit()

        assert reconcile_account(fresh(account)) is True

        account = fresh(account)
        assert account.balance == Decimal("16")
        assert account.passive_income == Decimal("0")
        assert reconcile_account(account) is False

    def test_reconcile_all_reports_drifted_ids(self, make_account, post):
        clean = make_account("clean")
        dirty = make_account("dirty")
        post(clean, "direct", 16)
        post(dirty, "direct", 16)
        fresh(dirty).direct_income = Decimal("1")
        db.session.commit()

        assert reconcile_all() == [dirty.id]
        assert_matches_ledger(clean, dirty)

    def test_entries_are_immutable(self, make_account, post):
        entry = post(make_account("a"), "direct", 16)
        entry.amount = Decimal("1600")
        with pytest.raises(ValueError):
            db.session.commit()
        db.session.rollback()
        assert db.session.get(LedgerEntry, entry.id).amount == Decimal("16")

    def test_wipe(self, make_account, post):
        account = make_account("a")
        post(account, "direct", 16)
        run_incremental()

        assert wipe_ledger() == 1

        assert LedgerEntry.query.count() == 0
        assert DailyStat.query.count() == 0
        assert JobMeta.query.count() == 0
        assert fresh(account).balance == Decimal("0")


class TestAccounts:

    def test_signup_defaults(self, make_account):
        sponsor = make_account("sponsor")
        account = create_account(" New ", "New@Example.com", "secret123", referral_code=sponsor.referral_code.lower())

        assert account.email == "new@example.com"
        assert account.name == "New"
        assert account.status == "pending"
        assert account.plan is None
        assert account.referrer_id == sponsor.id
        assert len(account.referral_code) == 8
        assert find_by_referral_code(account.referral_code).id == account.id
        assert account.check_password("secret123")

    def test_signup_validation(self, make_account):
        make_account("taken")
        with pytest.raises(InvalidInputError):
            create_account("x", "not-an-email", "secret123")
        with pytest.raises(InvalidInputError):
            create_account("x", "x@example.com", "123")
        with pytest.raises(InvalidInputError):
            create_account("x", "x@example.com", "secret123", referral_code="UNKNOWN1")
        with pytest.raises(ConflictError):
            create_account("x", "taken1@example.com", "secret123")

    def test_referral_counts(self, make_account):
        s = make_account("s")
        kids = [make_account("kid", referrer=s) for _ in range(3)]
        assert referral_count(s.id) == 3
        assert [k.id for k in list_referrals(s.id)] == [k.id for k in kids]


class TestDeleteAccount:

    def test_removes_owned_rows_and_detaches_children(self, make_account, post):
        g = make_account("g", plan="masteric")
        s = make_account("s", referrer=g, plan="masteric")
        kid = make_account("kid", referrer=s)
        other_kid = make_account("kid", referrer=s)
        create_activation_request(kid.id, s.id, "knowic", "proof")
        post(s, "passive", 60)
        create_withdrawal(s.id, "Bank", "001", 30)
        run_incremental()
        s_id = s.id

        delete_account(s_id)

        assert db.session.get(Account, s_id) is None
        assert fresh(kid).referrer_id is None
        assert fresh(other_kid).referrer_id is None
        assert LedgerEntry.query.filter_by(account_id=s_id).count() == 0
        assert Withdrawal.query.filter_by(account_id=s_id).count() == 0
        assert ActivationRequest.query.count() == 0
        assert DailyStat.query.filter_by(account_id=s_id).count() == 0
        assert fresh(g).id == g.id

    def test_unknown_account(self, app):
        with pytest.raises(NotFoundError):
            delete_account(404)


class TestReferralTree:

    def test_upline_and_grand_sponsor(self, make_account):
        g = make_account("g")
        s = make_account("s", referrer=g)
        u = make_account("u", referrer=s)

        assert ReferralTreeHelper.get_upline(u).id == s.id
        assert ReferralTreeHelper.get_grand_sponsor(u).id == g.id
        assert ReferralTreeHelper.get_grand_sponsor(s) is None

    def test_descendants_by_level(self, make_account):
        root = make_account("root")
        a = make_account("a", referrer=root)
        b = make_account("b", referrer=root)
        c = make_account("c", referrer=a)

        assert ReferralTreeHelper.descendant_ids(root.id) == [(a.id, 1), (b.id, 1), (c.id, 2)]
        assert ReferralTreeHelper.descendant_ids(root.id, max_depth=1) == [(a.id, 1), (b.id, 1)]
        assert ReferralTreeHelper.get_network_summary(root.id)["networkSize"] == 3

    def test_cycle_detection(self, make_account):
        root = make_account("root")
        child = make_account("child", referrer=root)
        grandchild = make_account("grandchild", referrer=child)
        stranger = make_account("stranger")

        assert ReferralTreeHelper.would_create_cycle(root.id, root.id)
        assert ReferralTreeHelper.would_create_cycle(root.id, grandchild.id)
        assert not ReferralTreeHelper.would_create_cycle(root.id, stranger.id)
        assert not ReferralTreeHelper.would_create_cycle(grandchild.id, root.id)

    def test_cycle_detection_walks_whole_chain(self, make_account):
        root = make_account("root")
        node = root
        for depth in range(80):
            node = make_account(f"n{depth}", referrer=node)

        chain = ReferralTreeHelper.ancestor_ids(node.id)
        assert len(chain) == 80
        assert chain[-1] == root.id
        assert ReferralTreeHelper.ancestor_ids(node.id, max_depth=2) == chain[:2]
        assert ReferralTreeHelper.would_create_cycle(root.id, node.id)

    def test_ancestor_walk_stops_on_existing_loop(self, make_account):
        a = make_account("a")
        b = make_account("b", referrer=a)
        c = make_account("c", referrer=b)
        fresh(a).referrer_id = c.id
        db.session.commit()

        assert ReferralTreeHelper.ancestor_ids(c.id) == [b.id, a.id]


class TestPlanConfiguration:

    def test_hierarchy(self, app):
        assert PlanConfigHelper.allowed_plans("knowic") == ["knowic"]
        assert PlanConfigHelper.allowed_plans("learnic") == ["knowic", "learnic"]
        assert PlanConfigHelper.allowed_plans("masteric") == ["knowic", "learnic", "masteric"]
        assert PlanConfigHelper.allowed_plans(None) == []

    def test_expected_payment(self, app):
        assert PlanConfigHelper.expected_payment("masteric", self_activation=True) == Decimal("130")
        assert PlanConfigHelper.expected_payment("masteric", self_activation=False) == Decimal("45")

    def test_pricing_is_configurable(self, app):
        app.config["PLAN_PRICING"] = {
            "basic": {"rank": 1, "price": "10", "direct": "5", "passive": "1", "max_discount": "2"},
        }
        assert PlanConfigHelper.commission_amounts("basic") == (Decimal("5"), Decimal("1"))
        assert PlanConfigHelper.validate_plan_configuration()[0] is True
        with pytest.raises(InvalidInputError):
            PlanConfigHelper.pricing_for("knowic")
