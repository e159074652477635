"""Typer CLI for Scribe-Audit.

``verify`` is the cron entry point: exit 0 = intact, 1 = broken
(tamper or corruption, alert), 2 = operational error (alert, distinct).
"""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(name="scribe-audit", help="Scribe-Audit: tamper-evident audit chain")
secrets_app = typer.Typer(help="Restricted secret administration")
app.add_typer(secrets_app, name="secrets")
console = Console()


async def _with_db(fn):
    from scribe_audit.deps import get_db

    db = get_db()
    await db.init()
    await db.create_all()
    try:
        return await fn(db)
    finally:
        await db.close()


def _setup_logging() -> None:
    from scribe_audit.common.config import get_settings
    from scribe_audit.common.logging import setup_logging

    setup_logging(get_settings().log_level)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind host"),
    port: int = typer.Option(8080, help="Bind port"),
):
    """Start the Scribe-Audit API server."""
    import uvicorn
    from scribe_audit.app import create_app

    console.print(f"[bold green]Starting Scribe-Audit on {host}:{port}[/bold green]")
    uvicorn.run(create_app(), host=host, port=port)


@app.command("init-db")
def init_db():
    """Create tables and seed an empty secret store from SCRIBE_AUDIT_AUDIT_SECRETS."""
    from scribe_audit.deps import get_secret_store

    async def _run(db):
        async with db.get_session() as session:
            return await get_secret_store().bootstrap_from_settings(session)

    imported = asyncio.run(_with_db(_run))
    if imported:
        console.print(f"[bold green]Imported secret versions:[/bold green] {imported}")
    else:
        console.print("Tables ready; no secrets imported")


@app.command()
def verify(
    chain_id: str = typer.Option(None, "--chain-id", help="Verify a single chain"),
    incremental: bool = typer.Option(False, "--incremental", help="Only entries after the cursor"),
    source: str = typer.Option("cron", help="Recorded as the run source"),
):
    """Run one verification pass, record it, and exit with its status."""
    from scribe_audit.deps import get_scheduler
    from scribe_audit.scheduler.runner import FULL, INCREMENTAL, exit_status

    _setup_logging()
    kind = INCREMENTAL if incremental else FULL

    async def _run(db):
        return await get_scheduler().run_once(kind, chain_id=chain_id, source=source)

    try:
        run = asyncio.run(_with_db(_run))
    except Exception as e:
        console.print(f"[bold red]ERROR[/bold red] — could not run verification: {e}")
        raise typer.Exit(2)

    if run.status == "intact":
        console.print(f"[bold green]INTACT[/bold green] — {kind} verification")
    elif run.status == "broken":
        console.print(f"[bold red]BROKEN[/bold red] — {kind} verification")
        console.print(f"  Chain: {run.broken_chain_id}")
        console.print(f"  Entry: {run.broken_at_id} ({run.reason})")
        console.print(f"  Expected: {run.expected}")
        console.print(f"  Actual:   {run.actual}")
    else:
        console.print(f"[bold yellow]ERROR[/bold yellow] — {run.error}")
    console.print(
        f"  Chains: {run.chains_checked}  Entries: {run.verified_entries}/{run.total_entries}"
    )
    raise typer.Exit(int(exit_status(run.status)))


@app.command()
def schedule():
    """Run incremental and full verification on their configured cadence."""
    from scribe_audit.common.config import get_settings
    from scribe_audit.deps import get_scheduler

    _setup_logging()
    settings = get_settings()
    console.print(
        f"[bold green]Scheduling[/bold green] incremental every "
        f"{settings.incremental_interval_seconds}s, full every {settings.full_interval_seconds}s"
    )

    async def _run(db):
        await get_scheduler().run_forever()

    try:
        asyncio.run(_with_db(_run))
    except KeyboardInterrupt:
        console.print("Stopped")


@app.command()
def entries(
    chain_id: str = typer.Argument(..., help="Chain (principal) id"),
    limit: int = typer.Option(10, "--limit", "-n", help="Number of entries to show"),
    action: str = typer.Option(None, help="Filter by action"),
):
    """List recent entries of a chain."""
    from scribe_audit.deps import get_chain_writer

    async def _run(db):
        async with db.get_session() as session:
            return await get_chain_writer().get_entries(session, chain_id, action=action, limit=limit)

    rows = asyncio.run(_with_db(_run))
    if not rows:
        console.print("[yellow]No audit entries found[/yellow]")
        return
    table = Table(title=f"Audit entries for {chain_id}")
    for col in ("Time", "Action", "Resource", "Version", "Hash"):
        table.add_column(col)
    for e in rows:
        table.add_row(
            e.created_at.isoformat(),
            e.action,
            f"{e.resource_type}:{e.resource_id or '-'}",
            str(e.secret_version) if e.secret_version is not None else "-",
            f"{e.hash[:16]}..." if e.hash else "(grandfathered)",
        )
    console.print(table)


@app.command()
def runs(
    limit: int = typer.Option(10, "--limit", "-n"),
    kind: str = typer.Option(None, help="full or incremental"),
):
    """Show recent verification runs."""
    from scribe_audit.deps import get_run_recorder

    async def _run(db):
        async with db.get_session() as session:
            return await get_run_recorder().list_runs(session, kind=kind, limit=limit)

    rows = asyncio.run(_with_db(_run))
    table = Table(title="Verification runs")
    for col in ("Run at", "Kind", "Status", "Chains", "Verified", "Broken at"):
        table.add_column(col)
    for r in rows:
        table.add_row(
            r.run_at.isoformat(), r.kind, r.status, str(r.chains_checked),
            f"{r.verified_entries}/{r.total_entries}", r.broken_at_id or "",
        )
    console.print(table)


@app.command()
def status(
    url: str = typer.Option("http://localhost:8080", help="Server URL"),
    api_key: str = typer.Option(None, envvar="SCRIBE_AUDIT_API_KEY", help="Operator API key"),
):
    """Show the latest recorded verification run of a running server."""
    from scribe_audit.client import AuditClient

    with AuditClient(server_url=url, api_key=api_key, max_retries=1) as client:
        health = client.health()
        if "error" in health:
            console.print(f"[bold red]Error:[/bold red] {health['error']}")
            raise typer.Exit(2)
        run = client.latest_run()
    if run is None:
        console.print("[yellow]No verification runs recorded[/yellow]")
        return
    colour = {"intact": "green", "broken": "red"}.get(run.status, "yellow")
    console.print(f"[bold {colour}]{run.status.upper()}[/bold {colour}] — {run.kind} run at {run.run_at}")


# ── Secret administration ──


@secrets_app.command("add")
def secrets_add(
    version: int = typer.Argument(..., help="New secret version (monotonic)"),
    secret: str = typer.Option(..., prompt=True, hide_input=True, confirmation_prompt=True),
):
    """Issue a new secret version."""
    from scribe_audit.common.exceptions import AuditError
    from scribe_audit.deps import get_secret_store

    async def _run(db):
        async with db.get_session() as session:
            await get_secret_store().add_secret(session, version, secret)

    try:
        asyncio.run(_with_db(_run))
    except AuditError as e:
        console.print(f"[bold red]{e.code}[/bold red] — {e.message}")
        raise typer.Exit(1)
    console.print(f"[bold green]Added[/bold green] secret version {version}")


@secrets_app.command("set-default")
def secrets_set_default(version: int = typer.Argument(..., help="Version for new appends")):
    """Rotate the default version. Existing entries keep their version."""
    from scribe_audit.common.exceptions import AuditError
    from scribe_audit.deps import get_secret_store

    async def _run(db):
        async with db.get_session() as session:
            await get_secret_store().set_default_version(session, version)

    try:
        asyncio.run(_with_db(_run))
    except AuditError as e:
        console.print(f"[bold red]{e.code}[/bold red] — {e.message}")
        raise typer.Exit(1)
    console.print(f"[bold green]Default secret version is now {version}[/bold green]")


@secrets_app.command("list")
def secrets_list():
    """List secret versions (metadata only)."""
    from scribe_audit.deps import get_secret_store

    async def _run(db):
        async with db.get_session() as session:
            return await get_secret_store().list_versions(session)

    versions = asyncio.run(_with_db(_run))
    table = Table(title="Audit secret versions")
    for col in ("Version", "Created", "Default"):
        table.add_column(col)
    for v in versions:
        table.add_row(str(v.version), v.created_at.isoformat(), "yes" if v.is_default else "")
    console.print(table)


if __name__ == "__main__":
    app()
