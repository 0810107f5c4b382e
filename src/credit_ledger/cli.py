"""Typer CLI for the credit ledger."""

import asyncio

import typer
from rich.console import Console

app = typer.Typer(name="ledger", help="Credit-Ledger: user credits and on-chain top-ups")
console = Console()


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind host"),
    port: int = typer.Option(8080, help="Bind port"),
):
    """Start the Credit-Ledger API server."""
    import uvicorn
    from credit_ledger.app import create_app

    console.print(f"[bold green]Starting Credit-Ledger on {host}:{port}[/bold green]")
    uvicorn.run(create_app(), host=host, port=port)


@app.command()
def nonce():
    """Generate a payment nonce (offline, no DB required)."""
    from credit_ledger.payments.nonces import generate_nonce

    console.print(f"[bold]{generate_nonce()}[/bold]")


async def _with_store(fn):
    from credit_ledger.common.config import get_settings
    from credit_ledger.common.database import DatabaseManager
    from credit_ledger.credits.service import CreditStore

    settings = get_settings()
    db = DatabaseManager(settings)
    await db.init()
    try:
        await db.create_all()
        async with db.get_session() as session:
            return await fn(CreditStore(settings), session)
    finally:
        await db.close()


@app.command()
def balance(
    user_id: str = typer.Argument(..., help="User id"),
):
    """Show a user's credit balance."""
    credits = asyncio.run(_with_store(lambda store, session: store.get_credits(session, user_id)))
    console.print(f"{user_id}: [bold]{credits}[/bold] credits")


@app.command()
def grant(
    user_id: str = typer.Argument(..., help="User id"),
    amount: int = typer.Argument(..., help="Credits to add"),
):
    """Add credits to a user's balance (support grants)."""
    from credit_ledger.common.exceptions import ValidationError

    async def add(store, session):
        await store.add_credits(session, user_id, amount)
        return await store.get_credits(session, user_id)

    try:
        credits = asyncio.run(_with_store(add))
    except ValidationError as e:
        console.print(f"[bold red]{e.code}[/bold red]: {e.message}")
        raise typer.Exit(1)
    console.print(f"[bold green]Granted {amount}[/bold green]: {user_id} now has {credits} credits")


@app.command()
def health(
    url: str = typer.Option("http://localhost:8080", help="Server URL"),
):
    """Check Credit-Ledger server health."""
    import httpx

    try:
        resp = httpx.get(f"{url}/health", timeout=5)
        data = resp.json()
        console.print(f"[bold green]{data['status']}[/bold green] v{data['version']}")
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
