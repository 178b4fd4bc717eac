"""Typer CLI for Incident Hub."""

import asyncio

import typer
from rich.console import Console

app = typer.Typer(name="incident-hub", help="Incident Hub: incident reporting and triage service")
console = Console()


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind host"),
    port: int = typer.Option(5000, help="Bind port"),
):
    """Start the Incident Hub API server."""
    import uvicorn
    from incident_hub.app import create_app

    console.print(f"[bold green]Starting Incident Hub on {host}:{port}[/bold green]")
    uvicorn.run(create_app(), host=host, port=port)


async def _create_superadmin(name: str, email: str, password: str):
    from incident_hub.audit.context import SYSTEM_META
    from incident_hub.deps import get_audit_service, get_db, get_user_service
    from incident_hub.users.models import Role

    db = get_db()
    await db.init()
    await db.create_all()
    try:
        async with db.get_session() as session:
            user = await get_user_service().create_user(
                session, name, email, password, role=Role.SUPER_ADMIN,
            )
            await get_audit_service().record(
                session, "USER_CREATE", "User", user.id, None, SYSTEM_META,
                new_values={"name": user.name, "email": user.email, "role": user.role},
            )
            return user
    finally:
        await db.close()


@app.command("create-superadmin")
def create_superadmin(
    email: str = typer.Argument(..., help="Account email"),
    name: str = typer.Option("Super Admin", help="Display name"),
    password: str = typer.Option(..., prompt=True, hide_input=True, confirmation_prompt=True),
):
    """Create a SUPER_ADMIN account directly in the database."""
    from incident_hub.common.exceptions import IncidentHubError

    try:
        user = asyncio.run(_create_superadmin(name, email, password))
    except IncidentHubError as e:
        console.print(f"[bold red]{e.code}[/bold red]: {e.message}")
        raise typer.Exit(1)
    console.print(f"[bold green]Created[/bold green] {user.email} ({user.role}) id={user.id}")


@app.command()
def health(
    url: str = typer.Option("http://localhost:5000", help="Server URL"),
):
    """Check Incident Hub server health."""
    import httpx

    try:
        resp = httpx.get(f"{url}/health", timeout=5)
        data = resp.json()
        console.print(f"[bold green]{data['status']}[/bold green]: v{data['version']}")
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
