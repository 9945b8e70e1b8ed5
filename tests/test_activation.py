# tests/test_activation.py
from decimal import Decimal

import pytest

from extensions import db
from models import Account, ActivationRequest, LedgerEntry, AccountStatus
from commission.accounts import create_account
from commission.activation import (
    create_activation_request, approve_activation_request,
    reject_activation_request, list_activation_requests, get_pending_request_for,
)
from commission.errors import (
    NotFoundError, InvalidStateError, ForbiddenError, PlanNotAllowedError,
    ConflictError, InvalidInputError,
)
from helpers import fresh, entries_for, assert_matches_ledger, run_together


@pytest.fixture
def chain(make_account):
    """G (masteric) <- S (masteric) <- U (pending)."""
    g = make_account("grand", plan="masteric")
    s = make_account("sponsor", referrer=g, plan="masteric")
    u = make_account("subject", referrer=s)
    return g, s, u


class TestCreateActivationRequest:

    def test_sponsor_creates_pending_request(self, chain):
        _, s, u = chain
        request = create_activation_request(u.id, s.id, "knowic", "uploads/proof-1.png")

        assert request.status == "pending"
        assert request.sponsor_id == s.id
        assert get_pending_request_for(u.id).id == request.id
        assert LedgerEntry.query.count() == 0

    def test_unknown_subject(self, chain):
        _, s, _ = chain
        with pytest.raises(NotFoundError):
            create_activation_request(9999, s.id, "knowic", "proof")

    def test_subject_must_be_pending(self, chain):
        _, s, u = chain
        u.status = AccountStatus.ACTIVE.value
        db.session.commit()
        with pytest.raises(InvalidStateError):
            create_activation_request(u.id, s.id, "knowic", "proof")

    def test_only_upline_may_submit(self, chain, make_account):
        _, _, u = chain
        stranger = make_account("stranger", plan="masteric")
        with pytest.raises(ForbiddenError):
            create_activation_request(u.id, stranger.id, "knowic", "proof")

    def test_account_without_upline_submits_for_itself_only(self, make_account):
        root = make_account("root")
        other = make_account("other", plan="masteric")
        with pytest.raises(ForbiddenError):
            create_activation_request(root.id, other.id, "knowic", "proof")

        request = create_activation_request(root.id, root.id, "masteric", "proof")
        assert request.is_self_activation

    def test_sponsor_without_plan(self, make_account):
        s = make_account("sponsor")
        u = make_account("subject", referrer=s)
        with pytest.raises(InvalidStateError):
            create_activation_request(u.id, s.id, "knowic", "proof")

    def test_tier_one_sponsor_cannot_sell_tier_two(self, make_account):
        s = make_account("sponsor", plan="knowic")
        u = make_account("subject", referrer=s)
        with pytest.raises(PlanNotAllowedError):
            create_activation_request(u.id, s.id, "learnic", "proof")

    def test_tier_three_sponsor_sells_any_tier(self, make_account):
        s = make_account("sponsor", plan="masteric")
        for plan in ("knowic", "learnic", "masteric"):
            u = make_account("subject", referrer=s)
            assert create_activation_request(u.id, s.id, plan, "proof").plan == plan

    def test_second_pending_request_conflicts(self, chain):
        _, s, u = chain
        create_activation_request(u.id, s.id, "knowic", "proof")
        with pytest.raises(ConflictError):
            create_activation_request(u.id, s.id, "knowic", "proof-2")

    def test_pending_request_enforced_by_database(self, chain, monkeypatch):
        _, s, u = chain
        monkeypatch.setattr("commission.activation.get_pending_request_for", lambda subject_id: None)

        create_activation_request(u.id, s.id, "knowic", "proof")
        with pytest.raises(ConflictError):
            create_activation_request(u.id, s.id, "knowic", "proof-2")
        assert ActivationRequest.query.filter_by(subject_id=u.id).count() == 1

    @pytest.mark.parametrize("plan, proof", [("gold", "proof"), ("knowic", ""), ("knowic", None)])
    def test_malformed_input(self, chain, plan, proof):
        _, s, u = chain
        with pytest.raises(InvalidInputError):
            create_activation_request(u.id, s.id, plan, proof)


class TestActivationApproval:

    def test_pays_sponsor_direct_and_grand_sponsor_passive(self, chain):
        g, s, u = chain
        request = create_activation_request(u.id, s.id, "knowic", "proof")

        approve_activation_request(request.id)

        u, s, g = fresh(u), fresh(s), fresh(g)
        assert u.status == "active"
        assert u.plan == "knowic"
        assert s.direct_income == Decimal("16")
        assert s.balance == Decimal("16")
        assert g.passive_income == Decimal("2")
        assert g.balance == Decimal("2")

        [direct] = entries_for(s)
        assert (direct.kind, direct.amount) == ("direct", Decimal("16"))
        [passive] = entries_for(g)
        assert (passive.kind, passive.amount) == ("passive", Decimal("2"))
        assert entries_for(u) == []
        assert_matches_ledger(g, s, u)

    def test_sponsor_without_upline_gets_direct_only(self, make_account):
        s = make_account("sponsor", plan="learnic")
        u = make_account("subject", referrer=s)
        request = create_activation_request(u.id, s.id, "learnic", "proof")

        approve_activation_request(request.id)

        assert fresh(s).direct_income == Decimal("40")
        assert LedgerEntry.query.count() == 1
        assert_matches_ledger(s, u)

    def test_self_activation_pays_nobody(self, make_account):
        root = make_account("root")
        request = create_activation_request(root.id, root.id, "masteric", "proof")

        approve_activation_request(request.id)

        root = fresh(root)
        assert root.status == "active"
        assert root.plan == "masteric"
        assert root.balance == Decimal("0")
        assert LedgerEntry.query.count() == 0

    def test_second_approval_is_invalid_state(self, chain):
        g, s, u = chain
        request = create_activation_request(u.id, s.id, "knowic", "proof")
        approve_activation_request(request.id)

        with pytest.raises(InvalidStateError):
            approve_activation_request(request.id)

        assert LedgerEntry.query.count() == 2
        assert fresh(s).direct_income == Decimal("16")
        assert_matches_ledger(g, s)

    def test_unknown_request(self, app):
        with pytest.raises(NotFoundError):
            approve_activation_request(12345)

    def test_failed_posting_leaves_nothing_behind(self, chain, monkeypatch):
        from sqlalchemy.exc import OperationalError
        from commission import activation
        from commission.errors import InternalError

        g, s, u = chain
        request = create_activation_request(u.id, s.id, "knowic", "proof")
        calls = []

        def flaky_post(account, kind, amount, created_at=None):
            calls.append(kind)
            if kind == "passive":
                raise OperationalError("INSERT", {}, Exception("disk I/O error"))
            from commission.ledger import post_entry
            return post_entry(account, kind, amount, created_at)

        monkeypatch.setattr(activation, "post_entry", flaky_post)

        with pytest.raises(InternalError):
            approve_activation_request(request.id)

        assert calls == ["direct", "passive"]
        assert db.session.get(ActivationRequest, request.id).status == "pending"
        assert fresh(u).status == "pending"
        assert fresh(s).balance == Decimal("0")
        assert LedgerEntry.query.count() == 0


class TestActivationRejection:

    def test_rejection_deletes_request(self, chain):
        _, s, u = chain
        request = create_activation_request(u.id, s.id, "knowic", "proof")
        request_id = request.id

        reject_activation_request(request_id)

        assert db.session.get(ActivationRequest, request_id) is None
        assert fresh(u).status == "pending"
        with pytest.raises(NotFoundError):
            reject_activation_request(request_id)

    def test_cannot_reject_approved_request(self, chain):
        _, s, u = chain
        request = create_activation_request(u.id, s.id, "knowic", "proof")
        approve_activation_request(request.id)
        with pytest.raises(InvalidStateError):
            reject_activation_request(request.id)

    def test_new_request_allowed_after_rejection(self, chain):
        _, s, u = chain
        request = create_activation_request(u.id, s.id, "knowic", "proof")
        reject_activation_request(request.id)
        assert create_activation_request(u.id, s.id, "knowic", "proof-2").status == "pending"


class TestActivationListing:

    def test_expected_payment(self, chain, make_account):
        _, s, u = chain
        root = make_account("root")
        create_activation_request(u.id, s.id, "knowic", "proof")
        create_activation_request(root.id, root.id, "knowic", "proof")

        result = list_activation_requests()

        assert result["total"] == 2
        by_subject = {row["subjectId"]: row for row in result["requests"]}
        assert by_subject[u.id]["expectedPayment"] == 8.0
        assert by_subject[u.id]["isSelfActivation"] is False
        assert by_subject[root.id]["expectedPayment"] == 24.0
        assert by_subject[root.id]["isSelfActivation"] is True

    def test_status_filter_and_paging(self, chain, make_account):
        _, s, _ = chain
        for _ in range(3):
            u = make_account("subject", referrer=s)
            create_activation_request(u.id, s.id, "knowic", "proof")

        page = list_activation_requests(status="pending", page=2, limit=2)
        assert page["count"] == 1
        assert page["pages"] == 2
        assert list_activation_requests(status="approved")["total"] == 0
        assert list_activation_requests(status="all")["total"] == 3


class TestConcurrentActivationApproval:

    def test_exactly_one_payout(self, file_app):
        with file_app.app_context():
            g = create_account("Grand", "grand@example.com", "secret123")
            s = create_account("Sponsor", "sponsor@example.com", "secret123", referral_code=g.referral_code)
            u = create_account("Subject", "subject@example.com", "secret123", referral_code=s.referral_code)
            for account in (g, s):
                account.plan = "masteric"
                account.status = AccountStatus.ACTIVE.value
            db.session.commit()
            request_id = create_activation_request(u.id, s.id, "knowic", "proof").id
            g_id, s_id = g.id, s.id

        outcomes = run_together(file_app, lambda: approve_activation_request(request_id))

        assert outcomes.count("ok") == 1
        assert len(outcomes) == 2
        assert all(isinstance(o, InvalidStateError) for o in outcomes if o != "ok")

        with file_app.app_context():
            assert db.session.get(Account, s_id).direct_income == Decimal("16")
            assert db.session.get(Account, g_id).passive_income == Decimal("2")
            assert LedgerEntry.query.count() == 2
            db.session.remove()
