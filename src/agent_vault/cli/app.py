"""CLI for Agent Vault - manage agent wallets from the terminal."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from agent_vault.config import StorageOptions, get_root_dir, load_config
from agent_vault.errors import WalletError
from agent_vault.wallet.chains import list_chain_names
from agent_vault.wallet.derivation import validate_seed_phrase
from agent_vault.wallet.manager import WalletManager

app = typer.Typer(
    name="agent-vault",
    help="Multi-chain wallets for AI agents.",
    no_args_is_help=True,
)
console = Console()

_options: dict = {"store_dir": None, "memory": False}


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        console.print(f"agent-vault {version('agent-vault')}")
        raise typer.Exit()


@app.callback()
def main(
    store_dir: Path = typer.Option(
        None,
        "--store-dir",
        help="Wallet store directory (default: .agent-vault/wallets)",
        envvar="AGENT_VAULT_STORE_DIR",
    ),
    memory: bool = typer.Option(
        False, "--memory", help="Use a throwaway in-memory store"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """Multi-chain wallets for AI agents."""
    config = load_config(get_root_dir() / "config.yaml")
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _options["store_dir"] = store_dir
    _options["memory"] = memory


def _run(coro):
    """Run an async function synchronously."""
    return asyncio.run(coro)


def _manager() -> WalletManager:
    config = load_config(get_root_dir() / "config.yaml")
    if _options["memory"]:
        storage = StorageOptions(backend="memory")
    elif _options["store_dir"] is not None:
        storage = StorageOptions(backend="file", base_dir=_options["store_dir"])
    else:
        storage = config.storage
    return WalletManager(storage, networks=config.networks)


def _fail(exc: WalletError) -> NoReturn:
    console.print(f"[red]{exc.kind}:[/red] {exc}")
    raise typer.Exit(1)


# ------------------------------------------------------------------
# wallet sub-commands
# ------------------------------------------------------------------

wallet_app = typer.Typer(
    name="wallet",
    help="Create, import and inspect agent wallets.",
    no_args_is_help=True,
)
app.add_typer(wallet_app, name="wallet")

_AGENT = typer.Option(..., "--agent", "-a", help="Owning agent id")
_CHAIN = typer.Option(
    "cketh", "--chain", "-c", help=f"Chain ({', '.join(list_chain_names())})"
)


@wallet_app.command("generate")
def wallet_generate(
    agent: str = _AGENT,
    chain: str = _CHAIN,
    path: str = typer.Option(None, "--path", help="Derivation path override"),
):
    """Generate a wallet from a fresh 12-word mnemonic."""
    try:
        wallet = _manager().generate_wallet(agent, chain, derivation_path=path)
    except WalletError as exc:
        _fail(exc)

    console.print(Panel(
        f"[bold green]Wallet created![/bold green]\n\n"
        f"ID:      [cyan]{wallet.id}[/cyan]\n"
        f"Chain:   {wallet.chain.value}\n"
        f"Address: [cyan]{wallet.address}[/cyan]\n"
        f"Path:    {wallet.seed_derivation_path}\n\n"
        f"Mnemonic: [bold yellow]{wallet.mnemonic}[/bold yellow]\n\n"
        f"[dim]Write the mnemonic down now. It is not shown again.[/dim]",
        title="Agent Wallet",
    ))


@wallet_app.command("import-key")
def wallet_import_key(
    agent: str = _AGENT,
    chain: str = _CHAIN,
):
    """Import a wallet from a hex private key (read from a hidden prompt)."""
    private_key = typer.prompt("Private key (hex)", hide_input=True)
    try:
        wallet = _manager().import_wallet_from_private_key(agent, chain, private_key)
    except WalletError as exc:
        _fail(exc)
    console.print(f"Imported [cyan]{wallet.id}[/cyan]: {wallet.address} ({wallet.chain.value})")


@wallet_app.command("import-mnemonic")
def wallet_import_mnemonic(
    agent: str = _AGENT,
    chain: str = _CHAIN,
    path: str = typer.Option(None, "--path", help="Derivation path override"),
):
    """Import a wallet from a BIP-39 mnemonic (read from a hidden prompt)."""
    phrase = typer.prompt("Mnemonic", hide_input=True)
    try:
        wallet = _manager().import_wallet_from_mnemonic(agent, chain, phrase, derivation_path=path)
    except WalletError as exc:
        _fail(exc)
    console.print(f"Imported [cyan]{wallet.id}[/cyan]: {wallet.address} ({wallet.chain.value})")


@wallet_app.command("list")
def wallet_list(agent: str = _AGENT):
    """List an agent's wallets."""
    try:
        wallets = _manager().list_agent_wallets(agent)
    except WalletError as exc:
        _fail(exc)

    if not wallets:
        console.print(f"[yellow]No wallets for agent {agent}.[/yellow]")
        return

    table = Table(title=f"Wallets of {agent}")
    table.add_column("ID", style="cyan")
    table.add_column("Chain")
    table.add_column("Address")
    table.add_column("Method", style="dim")
    table.add_column("Created", style="dim")
    for w in wallets:
        table.add_row(
            w.id,
            w.chain.value,
            w.address,
            w.creation_method.value,
            w.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@wallet_app.command("show")
def wallet_show(
    wallet_id: str = typer.Argument(..., help="Wallet id"),
    agent: str = _AGENT,
):
    """Show one wallet (key material is never printed)."""
    try:
        wallet = _manager().require_wallet(agent, wallet_id)
    except WalletError as exc:
        _fail(exc)

    console.print(Panel(
        f"Chain:   {wallet.chain.value}\n"
        f"Address: [cyan]{wallet.address}[/cyan]\n"
        f"Method:  {wallet.creation_method.value}\n"
        f"Path:    {wallet.seed_derivation_path or '-'}\n"
        f"Created: {wallet.created_at.isoformat()}\n"
        f"Updated: {wallet.updated_at.isoformat()}",
        title=wallet.id,
    ))


@wallet_app.command("remove")
def wallet_remove(
    wallet_id: str = typer.Argument(..., help="Wallet id"),
    agent: str = _AGENT,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete a wallet. Funds are lost unless the key is backed up."""
    if not yes and not typer.confirm(f"Remove wallet {wallet_id} of {agent}?"):
        raise typer.Exit()
    try:
        _manager().remove_wallet(agent, wallet_id)
    except WalletError as exc:
        _fail(exc)
    console.print(f"[green]Removed[/green] {wallet_id}")


@wallet_app.command("balance")
def wallet_balance(agent: str = _AGENT):
    """Show balances of every wallet owned by an agent."""
    manager = _manager()

    async def _balances():
        try:
            return await manager.get_agent_balances(agent)
        finally:
            await manager.close()

    try:
        result = _run(_balances())
    except WalletError as exc:
        _fail(exc)

    table = Table(title=f"Balances of {agent}")
    table.add_column("Wallet", style="cyan")
    table.add_column("Chain")
    table.add_column("Balance", justify="right")
    table.add_column("Symbol")
    table.add_column("Status", style="dim")
    for wallet_id, info in result.items():
        err = info.get("error")
        table.add_row(
            wallet_id,
            info["chain"],
            info["balance"] or "-",
            info["symbol"],
            f"[red]{err}[/red]" if err else "[green]OK[/green]",
        )
    console.print(table)


@wallet_app.command("validate-mnemonic")
def wallet_validate_mnemonic(
    phrase: str = typer.Argument(..., help="Mnemonic phrase (quote it)"),
):
    """Check a mnemonic's word list and checksum."""
    if validate_seed_phrase(phrase):
        console.print("[green]valid[/green]")
    else:
        console.print("[red]invalid[/red]")
        raise typer.Exit(1)
