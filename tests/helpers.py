# tests/helpers.py
import threading
from decimal import Decimal

from extensions import db
from models import Account, LedgerEntry
from commission.errors import CommissionError
from commission.ledger import derive_balances

DEFAULT_PASSWORD = "secret123"


def fresh(account):
    """Reload an account from the database."""
    db.session.expire_all()
    return db.session.get(Account, account.id)


def entries_for(account, kind=None):
    query = LedgerEntry.query.filter_by(account_id=account.id)
    if kind:
        query = query.filter_by(kind=kind)
    return query.order_by(LedgerEntry.id).all()


def assert_matches_ledger(*accounts):
    """Cached totals equal the ledger-derived ones."""
    for account in accounts:
        account = fresh(account)
        derived = derive_balances(account.id)
        assert Decimal(account.balance) == derived["balance"]
        assert Decimal(account.direct_income) == derived["direct_income"]
        assert Decimal(account.passive_income) == derived["passive_income"]


def run_together(app, target, count=2):
    """
    Run `target` in `count` threads released at the same moment, each in its
    own app context. Returns "ok" or the raised CommissionError per call.
    """
    barrier = threading.Barrier(count)
    outcomes = []

    def worker():
        with app.app_context():
            barrier.wait()
            try:
                target()
                outcomes.append("ok")
            except CommissionError as e:
                outcomes.append(e)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return outcomes
