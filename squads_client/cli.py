#!/usr/bin/env python3
"""CLI interface for the Squads v4 client."""

import logging
import sys
from typing import Optional

import click
from solders.pubkey import Pubkey

from . import __version__, pda
from .client import SquadsClient
from .config import ClientConfig
from .errors import SquadsError
from .formatters import (
    format_addresses_json,
    format_addresses_table,
    format_json,
    format_multisig_table,
    format_pending_table,
    format_proposal_json,
    format_proposal_table,
)


class PubkeyType(click.ParamType):
    name = "address"

    def convert(self, value, param, ctx):
        if isinstance(value, Pubkey):
            return value
        try:
            return Pubkey.from_string(value)
        except ValueError:
            self.fail(f"{value!r} is not a valid base58 address", param, ctx)


ADDRESS = PubkeyType()

format_option = click.option(
    "-f", "--format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format"
)
rpc_option = click.option("-r", "--rpc", help="RPC endpoint URL")


def mask_api_key(url: str) -> str:
    """Mask API key in URL for display."""
    if "api-key=" in url:
        return url.split("api-key=")[0] + "api-key=***"
    return url


def _load_config(ctx: click.Context, rpc: Optional[str] = None) -> ClientConfig:
    return ClientConfig.load(ctx.obj.get("config_path"), endpoint=rpc, program_id=ctx.obj.get("program_id"))


def _client(ctx: click.Context, rpc: Optional[str]) -> SquadsClient:
    config = _load_config(ctx, rpc)
    click.echo(f"Using RPC: {mask_api_key(config.endpoint)}", err=True)
    click.echo("", err=True)
    return SquadsClient.from_config(config)


def _fail(e: Exception):
    click.echo(f"Error: {e}", err=True)
    sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option("-c", "--config", "config_path", type=click.Path(exists=True), help="YAML config file")
@click.option("-p", "--program-id", type=ADDRESS, help="Squads program id (for forks and test deployments)")
@click.option("-v", "--verbose", is_flag=True, help="Log RPC traffic and retries")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], program_id: Optional[Pubkey], verbose: bool):
    """Inspect Squads v4 multisigs and proposals on Solana."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(message)s',
        handlers=[logging.StreamHandler()]
    )
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["program_id"] = program_id


@cli.command(name="pda")
@click.option("-k", "--create-key", type=ADDRESS, help="Create key of the multisig")
@click.option("-m", "--multisig", "multisig_address", type=ADDRESS, help="Multisig address")
@click.option("-i", "--index", "transaction_index", type=int, help="Transaction index")
@click.option("--vault-index", type=int, default=0, show_default=True, help="Vault index")
@format_option
@click.pass_context
def derive(ctx: click.Context, create_key: Optional[Pubkey], multisig_address: Optional[Pubkey],
           transaction_index: Optional[int], vault_index: int, format: str):
    """Derive program addresses for a multisig (no network access)."""
    if create_key is None and multisig_address is None:
        raise click.UsageError("Pass --create-key or --multisig")

    try:
        program_id = _load_config(ctx).program_id
        addresses = {"program_config": pda.get_program_config_pda(program_id)}
        if create_key is not None:
            addresses["multisig"] = pda.get_multisig_pda(create_key, program_id)
            if multisig_address is None:
                multisig_address = addresses["multisig"][0]
        addresses[f"vault[{vault_index}]"] = pda.get_vault_pda(multisig_address, vault_index, program_id)
        if transaction_index is not None:
            addresses[f"transaction[{transaction_index}]"] = pda.get_transaction_pda(
                multisig_address, transaction_index, program_id
            )
            addresses[f"proposal[{transaction_index}]"] = pda.get_proposal_pda(
                multisig_address, transaction_index, program_id
            )
    except SquadsError as e:
        _fail(e)

    if format == "json":
        click.echo(format_addresses_json(addresses))
    else:
        click.echo(format_addresses_table(addresses))


@cli.command()
@click.argument("address", type=ADDRESS)
@rpc_option
@format_option
@click.pass_context
def multisig(ctx: click.Context, address: Pubkey, rpc: Optional[str], format: str):
    """Decode and show a multisig account."""
    click.echo(f"Reading multisig: {address}", err=True)
    try:
        ms = _client(ctx, rpc).get_multisig(address)
    except SquadsError as e:
        _fail(e)

    if format == "json":
        click.echo(format_json(ms))
    else:
        click.echo(format_multisig_table(ms, str(address)))


@cli.command()
@click.argument("multisig_address", metavar="MULTISIG", type=ADDRESS)
@click.argument("transaction_index", metavar="INDEX", type=int)
@rpc_option
@format_option
@click.pass_context
def proposal(ctx: click.Context, multisig_address: Pubkey, transaction_index: int, rpc: Optional[str], format: str):
    """Show a proposal, its votes and its effective state."""
    click.echo(f"Reading proposal #{transaction_index} of {multisig_address}", err=True)
    try:
        client = _client(ctx, rpc)
        ms = client.get_multisig(multisig_address)
        p = client.get_proposal(multisig_address, transaction_index)
        address = str(pda.get_proposal_pda(multisig_address, transaction_index, client.program_id)[0])
    except SquadsError as e:
        _fail(e)

    if format == "json":
        click.echo(format_proposal_json(p, ms, address))
    else:
        click.echo(format_proposal_table(p, ms, address))


@cli.command()
@click.argument("multisig_address", metavar="MULTISIG", type=ADDRESS)
@click.argument("member", type=ADDRESS)
@rpc_option
@format_option
@click.pass_context
def pending(ctx: click.Context, multisig_address: Pubkey, member: Pubkey, rpc: Optional[str], format: str):
    """List active proposals still waiting for MEMBER's vote."""
    try:
        client = _client(ctx, rpc)
        ms = client.get_multisig(multisig_address)
        proposals = client.pending_proposals(multisig_address, member)
    except SquadsError as e:
        _fail(e)

    if format == "json":
        click.echo(format_json(proposals))
    else:
        click.echo(format_pending_table(proposals, ms, str(member)))


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
