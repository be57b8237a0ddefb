"""
Flask CLI groups. An external cron calls `flask distribution daily` every day
and `flask distribution monthly` on the 1st.
"""
import click
from flask.cli import AppGroup

from ledger import profit_distribution
from ledger.errors import LedgerError
from ledger.store import LedgerStore
from ledger.users import make_admin

distribution_cli = AppGroup("distribution", help="Profit distribution runs.")
ledger_cli = AppGroup("ledger", help="Ledger maintenance.")
users_cli = AppGroup("users", help="User administration.")


def _echo_summary(summary):
    click.echo(
        f"{summary['period_type']}: processed={summary['processed']} "
        f"already_distributed={summary['already_distributed']} failed={summary['failed']} "
        f"total=${summary['total_distributed']} referral=${summary['total_referral_distributed']}"
    )
    for failure in summary["failures"]:
        click.echo(f"  user {failure['user_id']}: {failure['error']}", err=True)


@distribution_cli.command("daily")
def run_daily_command():
    """Credit today's daily profit."""
    _echo_summary(profit_distribution.run_daily())


@distribution_cli.command("monthly")
def run_monthly_command():
    """Credit this month's profit and referral income."""
    _echo_summary(profit_distribution.run_monthly())


@distribution_cli.command("backfill-daily")
@click.option("--days", default=30, show_default=True, type=int, help="Days to look back.")
def backfill_daily_command(days):
    """Create missing daily profit entries for past days."""
    try:
        summary = profit_distribution.backfill_daily(days)
    except LedgerError as e:
        raise click.ClickException(e.message)
    click.echo(
        f"backfill: users={summary['users']} created={summary['transactions_created']} "
        f"total=${summary['total_distributed']} failed={summary['failed']}"
    )


@ledger_cli.command("reconcile")
@click.option("--user-id", type=int, default=None, help="Check a single user.")
def reconcile_command(user_id):
    """Compare cached wallet balances with the ledger."""
    if user_id is not None:
        report = LedgerStore.reconcile(user_id)
        status = "OK" if report["consistent"] else "DRIFT"
        click.echo(f"user {user_id}: wallet={report['wallet_balance']} ledger={report['ledger_balance']} {status}")
        if not report["consistent"]:
            raise SystemExit(1)
        return

    drifted = LedgerStore.reconcile_all()
    if not drifted:
        click.echo("All wallets consistent with the ledger.")
        return
    for report in drifted:
        click.echo(
            f"user {report['user_id']}: wallet={report['wallet_balance']} "
            f"ledger={report['ledger_balance']} diff={report['difference']}"
        )
    raise SystemExit(1)


@users_cli.command("make-admin")
@click.argument("email")
def make_admin_command(email):
    """Grant the admin role."""
    try:
        user = make_admin(email)
    except LedgerError as e:
        raise click.ClickException(e.message)
    click.echo(f"{user.email} is now an admin.")


def register_cli(app):
    app.cli.add_command(distribution_cli)
    app.cli.add_command(ledger_cli)
    app.cli.add_command(users_cli)
