# Simple CLI for Sentinel Trader
import asyncio
import json
from pathlib import Path
from typing import Any

import click
from pydantic import BaseModel

from app.main import ApplicationOrchestrator, main as run_app


def _echo_json(payload: Any) -> None:
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    click.echo(json.dumps(payload, indent=2, default=str))


async def _with_app(operation):
    app = ApplicationOrchestrator()
    await app.initialize()
    try:
        return await operation(app)
    finally:
        await app.engine.shutdown()


@click.group()
def cli():
    """Sentinel Trader CLI"""
    pass


@cli.command()
def run():
    """Run the trading core until interrupted"""
    click.echo("Starting Sentinel Trader...")
    asyncio.run(run_app())


@cli.command()
@click.option("--sync/--no-sync", default=False, help="Replay venue-only positions into the ledger")
def reconcile(sync: bool):
    """Compare ledger positions with the venue"""
    async def _run(app: ApplicationOrchestrator):
        if sync:
            return await app.reconciliation.reconcile_on_startup()
        return await app.reconciliation.reconcile_periodic()

    _echo_json(asyncio.run(_with_app(_run)))


@cli.command("sell-all")
@click.confirmation_option(prompt="Close every open position at market?")
def sell_all():
    """Liquidate every position the venue reports"""
    async def _run(app: ApplicationOrchestrator):
        return await app.engine.sell_all_positions()

    result = asyncio.run(_with_app(_run))
    _echo_json(result)
    if result.failures or result.errors:
        raise click.ClickException(f"{len(result.failures)} orders failed, {len(result.errors)} errors")


@cli.command("stop-loss-status")
def stop_loss_status():
    """Show monitoring state and active stop-losses"""
    async def _run(app: ApplicationOrchestrator):
        status = await app.stop_loss.get_status()
        status["stop_losses"] = [config.model_dump(mode="json") for config in status["stop_losses"]]
        return status

    _echo_json(asyncio.run(_with_app(_run)))


@cli.command("risk-status")
def risk_status():
    """Show risk limits and the circuit breaker"""
    async def _run(app: ApplicationOrchestrator):
        return app.risk.get_status()

    _echo_json(asyncio.run(_with_app(_run)))


@cli.command("risk-reset")
def risk_reset():
    """Clear daily counters and the circuit breaker"""
    async def _run(app: ApplicationOrchestrator):
        return await app.risk.reset_daily_counters()

    _echo_json(asyncio.run(_with_app(_run)))


@cli.command()
def backup():
    """Back up the portfolio store"""
    async def _run(app: ApplicationOrchestrator):
        if app.backup is None:
            raise click.ClickException(
                f"Persistence backend '{app.settings.persistence.backend}' does not support backups"
            )
        return await app.backup.create_backup()

    click.echo(f"Backup written to {asyncio.run(_with_app(_run))}")


@cli.command()
@click.argument("backup_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def restore(backup_path: Path):
    """Restore the portfolio store from BACKUP_PATH"""
    async def _run(app: ApplicationOrchestrator):
        if app.backup is None:
            raise click.ClickException(
                f"Persistence backend '{app.settings.persistence.backend}' does not support backups"
            )
        await app.backup.restore_from_backup(backup_path)

    asyncio.run(_with_app(_run))
    click.echo(f"Portfolio restored from {backup_path}")


if __name__ == "__main__":
    cli()
