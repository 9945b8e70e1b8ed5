# cli.py - flask commands (flask init-db, flask make-admin, flask leaderboard run, flask ledger ...)
import json
import logging

import click
from flask.cli import AppGroup, with_appcontext
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import Account, Role
from commission.accounts import create_account, find_by_email
from commission.errors import CommissionError
from commission import ledger
from commission.plans import PlanConfigHelper
from leaderboard.aggregator import run_leaderboard_job, STRATEGIES

logger = logging.getLogger(__name__)

leaderboard_cli = AppGroup("leaderboard", help="Leaderboard aggregation")
ledger_cli = AppGroup("ledger", help="Ledger maintenance")


@click.command("init-db")
@with_appcontext
def init_db():
    """Create all tables (development and tests; production uses flask db upgrade)."""
    db.create_all()
    ok, message = PlanConfigHelper.validate_plan_configuration()
    click.echo("Database tables created")
    click.echo(message if ok else f"WARNING: {message}")


@click.command("make-admin")
@with_appcontext
@click.argument("email")
@click.option("--name", default="Administrator", help="Name used when the account is created")
@click.option("--password", default=None, help="Password used when the account is created")
def make_admin(email, name, password):
    """Promote EMAIL to admin, creating the account first if needed."""
    account = find_by_email(email)

    if account:
        click.echo(f"Found account id={account.id}, email={account.email}. Promoting to admin...")
    else:
        if not password:
            raise click.UsageError("--password is required to create a new admin account")
        click.echo(f"No account with email {email} found, creating it.")
        try:
            account = create_account(name=name, email=email, password=password, role=Role.ADMIN.value)
        except CommissionError as e:
            raise click.ClickException(e.message) from e

    try:
        account.role = Role.ADMIN.value
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise click.ClickException(f"Failed to promote {email}: {e}") from e

    logger.info(f"Account {account.id} promoted to admin")
    click.echo(f"Account (id={account.id}, email={account.email}) is now admin.")


@leaderboard_cli.command("run")
@click.option("--strategy", type=click.Choice(STRATEGIES), default=None,
              help="Override LEADERBOARD_STRATEGY for this run")
def leaderboard_run(strategy):
    """Run one aggregation pass now."""
    summary = run_leaderboard_job(strategy=strategy)
    click.echo(json.dumps(summary, indent=2, default=str))
    if summary.get("status") == "failed":
        raise click.ClickException(summary.get("error", "Leaderboard run failed"))


@ledger_cli.command("reconcile")
def ledger_reconcile():
    """Overwrite cached balances with ledger-derived totals."""
    try:
        drifted = ledger.reconcile_all()
    except CommissionError as e:
        raise click.ClickException(e.message) from e
    click.echo(f"{len(drifted)} accounts drifted" + (f": {drifted}" if drifted else ""))


@ledger_cli.command("wipe")
@click.option("--yes", is_flag=True, help="Confirm the wipe")
def ledger_wipe(yes):
    """Delete every ledger entry, leaderboard snapshot and the watermark."""
    if not yes:
        raise click.UsageError("Refusing to wipe the ledger without --yes")
    try:
        deleted = ledger.wipe_ledger()
    except CommissionError as e:
        raise click.ClickException(e.message) from e
    click.echo(f"Ledger wiped: {deleted} entries removed, {Account.query.count()} accounts zeroed")


def register_commands(app):
    app.cli.add_command(init_db)
    app.cli.add_command(make_admin)
    app.cli.add_command(leaderboard_cli)
    app.cli.add_command(ledger_cli)
