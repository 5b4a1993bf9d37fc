"""CLI commands for MedChain."""

import json
import sys

import click

from medchain_api.audit.trail import AuditTrail
from medchain_api.db.session import get_session_factory, init_db
from medchain_api.errors import MedChainError
from medchain_api.events.sink import build_event_sink
from medchain_api.identity.registry import UserRegistry
from medchain_api.ledger import DatabaseClock, Ledger
from medchain_api.settings import get_settings
from medchain_api.utils.logging import configure_logging


def _ledger() -> Ledger:
    session_factory = get_session_factory()
    return Ledger(session_factory, DatabaseClock(session_factory))


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, sort_keys=True, default=str))


@click.group()
def cli():
    """MedChain custody CLI."""
    settings = get_settings()
    configure_logging(settings, stream=sys.stderr)
    try:
        settings.validate_production_settings()
    except ValueError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)


@cli.command("init-db")
def init_db_command():
    """Create ledger tables."""
    click.echo("Creating ledger tables...")
    init_db(get_session_factory())
    click.echo("✓ Ledger tables ready.")


@cli.command("bootstrap-admin")
@click.option("--user-id", required=True, help="Id of the first admin")
@click.option("--name", required=True, help="Display name")
@click.option("--org", default=None, help="Organization (defaults to the patient registrar)")
def bootstrap_admin(user_id: str, name: str, org: str):
    """Register the first admin."""
    settings = get_settings()
    registry = UserRegistry(_ledger(), build_event_sink(settings), settings)
    try:
        admin = registry.bootstrap_admin(user_id, name, org or settings.patient_registrar_org)
    except MedChainError as e:
        click.echo(f"✗ {e.code}: {e}", err=True)
        sys.exit(1)
    click.echo(f"✓ Admin {admin.user_id} registered in {admin.org}.")


@cli.command()
@click.argument("key")
def history(key: str):
    """Print the committed history of KEY, oldest first."""
    entries = [
        {
            "version": entry.version,
            "txId": entry.tx_id,
            "committedAt": entry.committed_at.isoformat(),
            "isDelete": entry.is_delete,
            "value": entry.raw,
        }
        for entry in _ledger().history(key)
    ]
    if not entries:
        click.echo(f"✗ No history for {key}", err=True)
        sys.exit(1)
    _echo_json(entries)


@cli.command("verify-chain")
@click.argument("key")
def verify_chain(key: str):
    """Verify the hash chain of KEY."""
    valid, error = AuditTrail(_ledger()).verify_chain(key)
    if not valid:
        click.echo(f"✗ {error}", err=True)
        sys.exit(1)
    click.echo(f"✓ Hash chain for {key} is intact.")


@cli.command()
@click.argument("subject_id")
@click.option("--limit", type=int, default=None, help="Only the newest N events")
def audit(subject_id: str, limit: int):
    """Print the audit timeline of SUBJECT_ID, newest first."""
    trail = AuditTrail(_ledger())
    events = trail.audit_log(subject_id) if limit is None else trail.recent_activity(subject_id, limit)
    _echo_json([event.model_dump(mode="json", exclude_none=True) for event in events])


if __name__ == "__main__":
    cli()
