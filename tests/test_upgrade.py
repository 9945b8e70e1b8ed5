# tests/test_upgrade.py
from decimal import Decimal

import pytest

from extensions import db
from models import Account, UpgradeRequest
from commission.discounts import update_discount_settings
from commission.errors import (
    NotFoundError, InvalidStateError, ForbiddenError, PlanNotAllowedError,
    ConflictError, InvalidInputError,
)
from commission.upgrade import (
    create_upgrade_request, sponsor_approve_upgrade, sponsor_reject_upgrade,
    approve_upgrade_request, reject_upgrade_request, get_open_upgrade_for,
    list_upgrades_for_sponsor, list_upgrades_for_admin,
)
from helpers import fresh, entries_for, assert_matches_ledger


@pytest.fixture
def network(make_account):
    """
    G (masteric) <- S (masteric)      new sponsor and its upline
    O (knowic)   <- U (knowic)        subject and its current upline
    """
    g = make_account("grand", plan="masteric")
    s = make_account("sponsor", referrer=g, plan="masteric")
    o = make_account("old", plan="knowic")
    u = make_account("subject", referrer=o, plan="knowic")
    return g, s, o, u


def sponsor_approved(u, s, plan="learnic"):
    upgrade = create_upgrade_request(u.id, plan, s.referral_code)
    return sponsor_approve_upgrade(upgrade.id, s.id, "uploads/upgrade-proof.png")


class TestCreateUpgradeRequest:

    def test_creates_request_for_new_sponsor(self, network):
        _, s, _, u = network
        upgrade = create_upgrade_request(u.id, "learnic", s.referral_code.lower())

        assert upgrade.status == "created"
        assert upgrade.previous_plan == "knowic"
        assert upgrade.new_sponsor_id == s.id
        assert get_open_upgrade_for(u.id).id == upgrade.id
        assert [r.id for r in list_upgrades_for_sponsor(s.id)] == [upgrade.id]

    def test_subject_must_exist(self, network):
        _, s, _, _ = network
        with pytest.raises(NotFoundError):
            create_upgrade_request(9999, "learnic", s.referral_code)

    def test_subject_needs_a_plan(self, network, make_account):
        _, s, _, _ = network
        pending = make_account("pending")
        with pytest.raises(InvalidStateError):
            create_upgrade_request(pending.id, "learnic", s.referral_code)

    @pytest.mark.parametrize("plan", ["knowic", "gold"])
    def test_target_must_be_a_higher_plan(self, network, plan):
        _, s, _, u = network
        with pytest.raises(InvalidInputError):
            create_upgrade_request(u.id, plan, s.referral_code)

    @pytest.mark.parametrize("code", ["", None, "NOPE0000"])
    def test_referral_code_required_and_known(self, network, code):
        _, _, _, u = network
        with pytest.raises(InvalidInputError):
            create_upgrade_request(u.id, "learnic", code)

    def test_new_sponsor_needs_a_plan(self, network, make_account):
        _, _, _, u = network
        planless = make_account("planless")
        with pytest.raises(InvalidStateError):
            create_upgrade_request(u.id, "learnic", planless.referral_code)

    def test_new_sponsor_plan_must_allow_target(self, network):
        _, _, o, u = network
        with pytest.raises(PlanNotAllowedError):
            create_upgrade_request(u.id, "learnic", o.referral_code)

    def test_one_open_upgrade_at_a_time(self, network):
        _, s, _, u = network
        create_upgrade_request(u.id, "learnic", s.referral_code)
        with pytest.raises(ConflictError):
            create_upgrade_request(u.id, "masteric", s.referral_code)

    def test_open_upgrade_enforced_by_database(self, network, monkeypatch):
        _, s, _, u = network
        sponsor_approved(u, s)
        monkeypatch.setattr("commission.upgrade.get_open_upgrade_for", lambda subject_id: None)

        with pytest.raises(ConflictError):
            create_upgrade_request(u.id, "masteric", s.referral_code)
        assert UpgradeRequest.query.filter_by(subject_id=u.id).count() == 1


class TestUpgradeCycleGuard:

    def test_descendant_cannot_become_sponsor(self, make_account):
        u = make_account("subject", plan="learnic")
        child = make_account("child", referrer=u, plan="masteric")
        grandchild = make_account("grandchild", referrer=child, plan="masteric")

        for sponsor in (child, grandchild):
            with pytest.raises(InvalidInputError):
                create_upgrade_request(u.id, "masteric", sponsor.referral_code)
        assert UpgradeRequest.query.count() == 0

    def test_deep_descendant_cannot_become_sponsor(self, make_account):
        root = make_account("root", plan="knowic")
        node = root
        for depth in range(70):
            node = make_account(f"level{depth}", referrer=node, plan="masteric")

        with pytest.raises(InvalidInputError):
            create_upgrade_request(root.id, "learnic", node.referral_code)
        assert UpgradeRequest.query.count() == 0

    def test_guard_rechecked_at_admin_approval(self, network):
        g, s, _, u = network
        upgrade = sponsor_approved(u, s)

        # S moved under U after the sponsor step
        fresh(s).referrer_id = u.id
        db.session.commit()

        with pytest.raises(InvalidInputError):
            approve_upgrade_request(upgrade.id)

        assert db.session.get(UpgradeRequest, upgrade.id).status == "sponsor_approved"
        assert fresh(u).referrer_id != s.id
        assert entries_for(s) == []


class TestSponsorStep:

    def test_sponsor_approves_with_proof(self, network):
        _, s, _, u = network
        upgrade = sponsor_approved(u, s)

        assert upgrade.status == "sponsor_approved"
        assert upgrade.proof_reference == "uploads/upgrade-proof.png"
        assert upgrade.discounted is False
        assert upgrade.original_price == Decimal("19")
        assert upgrade.final_price == Decimal("19")
        assert [r.id for r in list_upgrades_for_admin()] == [upgrade.id]

    def test_only_new_sponsor_may_act(self, network):
        g, s, _, u = network
        upgrade = create_upgrade_request(u.id, "learnic", s.referral_code)
        with pytest.raises(ForbiddenError):
            sponsor_approve_upgrade(upgrade.id, g.id, "proof")
        with pytest.raises(ForbiddenError):
            sponsor_reject_upgrade(upgrade.id, g.id)

    def test_proof_required(self, network):
        _, s, _, u = network
        upgrade = create_upgrade_request(u.id, "learnic", s.referral_code)
        with pytest.raises(InvalidInputError):
            sponsor_approve_upgrade(upgrade.id, s.id, "  ")

    def test_sponsor_step_only_once(self, network):
        _, s, _, u = network
        upgrade = sponsor_approved(u, s)
        with pytest.raises(InvalidStateError):
            sponsor_approve_upgrade(upgrade.id, s.id, "proof")

    def test_sponsor_rejection_deletes(self, network):
        _, s, _, u = network
        upgrade = create_upgrade_request(u.id, "learnic", s.referral_code)
        upgrade_id = upgrade.id

        sponsor_reject_upgrade(upgrade_id, s.id)

        assert db.session.get(UpgradeRequest, upgrade_id) is None
        assert get_open_upgrade_for(u.id) is None

    def test_unknown_request(self, network):
        _, s, _, _ = network
        with pytest.raises(NotFoundError):
            sponsor_approve_upgrade(4242, s.id, "proof")


class TestAdminUpgradeApproval:

    def test_moves_subject_and_pays_commission(self, network):
        g, s, o, u = network
        upgrade = sponsor_approved(u, s)

        approve_upgrade_request(upgrade.id)

        u, s, g = fresh(u), fresh(s), fresh(g)
        assert u.plan == "learnic"
        assert u.referrer_id == s.id
        assert s.direct_income == Decimal("40")
        assert g.passive_income == Decimal("4")
        assert entries_for(o) == []
        assert db.session.get(UpgradeRequest, upgrade.id).status == "approved"
        assert get_open_upgrade_for(u.id) is None
        assert_matches_ledger(g, s, o, u)

    def test_discounted_upgrade_skips_passive(self, network):
        g, s, _, u = network
        update_discount_settings(enabled=True, discounts={"learnic": 10})

        upgrade = sponsor_approved(u, s)
        assert upgrade.discounted is True
        assert upgrade.discount_amount == Decimal("10")
        assert upgrade.final_price == Decimal("9")

        approve_upgrade_request(upgrade.id)

        assert fresh(s).direct_income == Decimal("40")
        assert fresh(g).passive_income == Decimal("0")
        assert entries_for(g) == []

    def test_passive_kept_when_suppression_disabled(self, app, network):
        g, s, _, u = network
        app.config["SUPPRESS_PASSIVE_ON_DISCOUNT"] = False
        update_discount_settings(enabled=True, discounts={"learnic": 10})

        approve_upgrade_request(sponsor_approved(u, s).id)

        assert fresh(g).passive_income == Decimal("4")

    def test_disabled_discount_is_not_applied(self, network):
        _, s, _, u = network
        update_discount_settings(enabled=False, discounts={"learnic": 10})
        assert sponsor_approved(u, s).discounted is False

    def test_requires_sponsor_step_first(self, network):
        _, s, _, u = network
        upgrade = create_upgrade_request(u.id, "learnic", s.referral_code)
        with pytest.raises(InvalidStateError):
            approve_upgrade_request(upgrade.id)
        with pytest.raises(InvalidStateError):
            reject_upgrade_request(upgrade.id)

    def test_second_approval_is_invalid_state(self, network):
        g, s, _, u = network
        upgrade = sponsor_approved(u, s)
        approve_upgrade_request(upgrade.id)

        with pytest.raises(InvalidStateError):
            approve_upgrade_request(upgrade.id)
        assert len(entries_for(s)) == 1
        assert len(entries_for(g)) == 1

    def test_admin_rejection_deletes(self, network):
        _, s, o, u = network
        upgrade = sponsor_approved(u, s)
        upgrade_id = upgrade.id

        reject_upgrade_request(upgrade_id)

        assert db.session.get(UpgradeRequest, upgrade_id) is None
        u = fresh(u)
        assert u.plan == "knowic"
        assert u.referrer_id == o.id
        assert Account.query.filter(Account.balance > 0).count() == 0
