#!/usr/bin/env python3
"""
tokenbridge Operator CLI

Command-line interface for running bridge requests and working the
reconciliation queue.

Usage:
    tokenbridge submit --direction eth-to-sui --amount AMOUNT --source ADDR --dest ADDR [--key KEY]
    tokenbridge status <key>
    tokenbridge unresolved
    tokenbridge reconcile <key> --resolution RESOLUTION --operator NAME [--note NOTE]
    tokenbridge recover

Configuration is read from --config, $TOKENBRIDGE_CONFIG or ./tokenbridge.toml;
operator keys from $TOKENBRIDGE_ETH_PRIVATE_KEY / $TOKENBRIDGE_SUI_PRIVATE_KEY.
"""

import asyncio
import json
import sys
from datetime import datetime, timezone
from typing import Optional

import click

from .. import __version__
from ..bridge.interface import error_to_response
from ..bridge.request_ledger import reconcile_outcome
from ..bridge.request_store import SQLiteRequestLedger
from ..bridge.types import BridgeOutcome, Resolution
from ..config import BridgeConfig, build_runtime, load_config
from ..exceptions import BridgeError, ConfigurationError
from ..logger import configure_logging


def format_timestamp(ts: float) -> str:
    """Format a unix timestamp for display (UTC)."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, sort_keys=True))


def _load(ctx: click.Context) -> BridgeConfig:
    obj = ctx.ensure_object(dict)
    if "config" not in obj:
        try:
            config = load_config(obj.get("config_path"))
        except (ConfigurationError, ValueError) as e:
            raise click.ClickException(f"Invalid configuration: {e}")
        configure_logging(
            log_level=config.logging.level,
            file_output=config.logging.file_output,
        )
        obj["config"] = config
    return obj["config"]


async def _open_ledger(config: BridgeConfig) -> SQLiteRequestLedger:
    if not config.database.path:
        raise click.ClickException("[database] path must be set")
    return await SQLiteRequestLedger.create(config.database.path)


@click.group()
@click.version_option(version=__version__, prog_name="tokenbridge")
@click.option(
    "--config", "-c",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to tokenbridge.toml (default: $TOKENBRIDGE_CONFIG or ./tokenbridge.toml)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str]):
    """tokenbridge Operator Command Line Interface

    Bridge a fungible token between Ethereum and Sui, and resolve
    requests that failed after value left the source ledger.
    """
    ctx.ensure_object(dict)["config_path"] = config_path


# ══════════════════════════════════════════════════════════════════════
#  SUBMIT
# ══════════════════════════════════════════════════════════════════════

@cli.command("submit")
@click.option(
    "--direction", "-d",
    required=True,
    help="eth-to-sui or sui-to-eth (A-to-B / B-to-A accepted)",
)
@click.option("--amount", "-a", required=True, help="Amount in the source ledger's smallest unit")
@click.option("--source", "-s", "source_account", required=True, help="Source ledger account")
@click.option("--dest", "-t", "dest_account", required=True, help="Destination ledger account")
@click.option("--key", "-k", default=None, help="Idempotency key (generated if omitted)")
@click.pass_context
def submit_cmd(
    ctx: click.Context,
    direction: str,
    amount: str,
    source_account: str,
    dest_account: str,
    key: Optional[str],
):
    """Run one bridge request and print the response.

    Examples:

        tokenbridge submit -d eth-to-sui -a 1000000000000000000 -s 0xabc... -t 0xdef...

        tokenbridge submit -d sui-to-eth -a 500000000 -s 0xdef... -t 0xabc... -k refund-42
    """
    config = _load(ctx)
    payload = {
        "direction": direction,
        "amount": amount,
        "sourceAccount": source_account,
        "destAccount": dest_account,
    }
    if key is not None:
        payload["idempotencyKey"] = key

    async def run():
        runtime = await build_runtime(config)
        async with runtime:
            return await runtime.service.handle(payload)

    try:
        response = asyncio.run(run())
    except ConfigurationError as e:
        raise click.ClickException(str(e))

    echo_json(response)
    if not response.get("success"):
        sys.exit(1)


# ══════════════════════════════════════════════════════════════════════
#  STATUS / UNRESOLVED
# ══════════════════════════════════════════════════════════════════════

@cli.command("status")
@click.argument("key")
@click.pass_context
def status_cmd(ctx: click.Context, key: str):
    """Show a request, its outcome and any reconciliation."""
    config = _load(ctx)

    async def run():
        ledger = await _open_ledger(config)
        try:
            request = await ledger.get_request(key)
            outcome = await ledger.get_outcome(key)
            entries = await ledger.get_reconciliations(key)
        finally:
            await ledger.close()
        return request, outcome, entries

    request, outcome, entries = asyncio.run(run())
    if request is None and outcome is None:
        raise click.ClickException(f"No request with key {key}")

    echo_json({
        "request": request.to_dict() if request else None,
        "outcome": outcome.to_dict() if outcome else None,
        "reconciliations": [e.to_dict() for e in entries],
    })


def _describe(outcome: BridgeOutcome) -> str:
    src = outcome.source_operation.tx_handle if outcome.source_operation else None
    dst = outcome.destination_operation.tx_handle if outcome.destination_operation else None
    return (
        f"{outcome.request_id}  {outcome.status.value}  {format_timestamp(outcome.recorded_at)}\n"
        f"  source: {src or '-'}\n"
        f"  destination: {dst or '-'}\n"
        f"  detail: {outcome.detail}"
    )


@cli.command("unresolved")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
@click.pass_context
def unresolved_cmd(ctx: click.Context, as_json: bool):
    """List outcomes awaiting operator reconciliation."""
    config = _load(ctx)

    async def run():
        ledger = await _open_ledger(config)
        try:
            return await ledger.list_unresolved()
        finally:
            await ledger.close()

    outcomes = asyncio.run(run())
    if as_json:
        echo_json([o.to_dict() for o in outcomes])
        return
    if not outcomes:
        click.echo(click.style("No outcomes awaiting reconciliation.", fg="green"))
        return

    click.echo(click.style(f"{len(outcomes)} outcome(s) awaiting reconciliation:", fg="red", bold=True))
    click.echo()
    for outcome in outcomes:
        click.echo(_describe(outcome))
        click.echo()


# ══════════════════════════════════════════════════════════════════════
#  RECONCILE / RECOVER
# ══════════════════════════════════════════════════════════════════════

@cli.command("reconcile")
@click.argument("key")
@click.option(
    "--resolution", "-r",
    type=click.Choice([r.value for r in Resolution]),
    required=True,
    help="How the case was closed",
)
@click.option("--operator", "-o", required=True, help="Name of the operator closing the case")
@click.option("--note", "-n", default="", help="Free-form note for the audit trail")
@click.pass_context
def reconcile_cmd(ctx: click.Context, key: str, resolution: str, operator: str, note: str):
    """Record the resolution of an outcome awaiting reconciliation.

    The outcome itself is never modified; an audit entry is appended.
    """
    config = _load(ctx)

    async def run():
        ledger = await _open_ledger(config)
        try:
            return await reconcile_outcome(ledger, key, operator, Resolution(resolution), note)
        finally:
            await ledger.close()

    try:
        entry = asyncio.run(run())
    except BridgeError as e:
        raise click.ClickException(str(e))

    click.echo(click.style(f"✓ {key} reconciled as {entry.resolution.value}", fg="green"))


@cli.command("recover")
@click.pass_context
def recover_cmd(ctx: click.Context):
    """Close out requests left without an outcome (run after a crash).

    Nothing is submitted to either ledger; anything whose source leg may
    have moved value is queued for reconciliation.
    """
    config = _load(ctx)

    async def run():
        runtime = await build_runtime(config)
        async with runtime:
            return await runtime.orchestrator.recover_incomplete()

    try:
        outcomes = asyncio.run(run())
    except BridgeError as e:
        echo_json(error_to_response(e))
        sys.exit(1)

    if not outcomes:
        click.echo("No incomplete requests.")
        return
    for outcome in outcomes:
        click.echo(_describe(outcome))
        click.echo()


if __name__ == "__main__":
    cli()
