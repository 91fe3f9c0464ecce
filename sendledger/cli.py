"""
SendLedger CLI - Command line interface for maintenance jobs.

Usage:
    sendledger --help                                    Show all commands
    sendledger window verify_email user@example.com      Show the current cooldown window
    sendledger prune                                     Run ledger/token retention once
    sendledger prune --days 7                            Override retention days
    sendledger migrate                                   Run database migrations
    sendledger serve --reload                            Start the API server
"""

import asyncio

import typer

app = typer.Typer(
    name="sendledger",
    help="SendLedger CLI - idempotent email sends",
    no_args_is_help=True,
)


# --- Output helpers ---


def _print_success(message: str) -> None:
    """Print a success message."""
    typer.echo(f"  ✅ {message}")


def _print_skipped(message: str) -> None:
    """Print a skipped step message."""
    typer.echo(f"  ⏭️ {message}")


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


@app.command()
def window(
    purpose: str = typer.Argument(..., help="verify_email or password_reset"),
    email: str = typer.Argument(..., help="Recipient email address"),
    now_ms: int | None = typer.Option(None, "--now-ms", help="Epoch milliseconds (default: now)"),
):
    """Print the cooldown window and idempotency key for a purpose and recipient."""
    from sendledger.services.email_ledger import UnknownEmailPurposeError, compute_email_send_window

    try:
        result = compute_email_send_window(purpose, email, now_ms=now_ms)
    except UnknownEmailPurposeError:
        _print_error(f"Unknown purpose: {purpose}")
        raise typer.Exit(1)

    typer.echo(f"normalized_email:    {result.normalized_email}")
    typer.echo(f"cooldown_ms:         {result.cooldown_ms}")
    typer.echo(f"cooldown_bucket_iso: {result.cooldown_bucket_iso}")
    typer.echo(f"idempotency_key:     {result.idempotency_key}")


@app.command()
def prune(
    days: int | None = typer.Option(
        None, "--days", "-d", help="Retention days (default: config.yml)"
    ),
):
    """Delete old ledger rows and expired/used action tokens."""
    from sendledger.core.database import AsyncSessionLocal
    from sendledger.core.logging import setup_logging
    from sendledger.services.ledger_maintenance import run_retention

    setup_logging()

    async def run() -> dict:
        async with AsyncSessionLocal() as db:
            return await run_retention(db, retention_days=days)

    stats = asyncio.run(run())

    if stats["retention_days"] <= 0:
        _print_skipped("Ledger retention disabled")
    else:
        _print_success(f"Deleted {stats['ledger_rows_deleted']} ledger rows")
    _print_success(f"Deleted {stats['action_tokens_deleted']} action tokens")


@app.command()
def migrate():
    """Run database migrations (alembic upgrade head)."""
    import subprocess

    result = subprocess.run(["alembic", "upgrade", "head"], check=False)
    raise typer.Exit(result.returncode)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable hot reload"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to run on"),
):
    """Start the API server."""
    import subprocess

    cmd = ["uvicorn", "sendledger.main:app", "--host", "0.0.0.0", "--port", str(port)]
    if reload:
        cmd.append("--reload")

    subprocess.run(cmd, check=False)


if __name__ == "__main__":
    app()
