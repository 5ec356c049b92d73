"""
Restaurant Realtime CLI.

Command-line interface for running and poking at the gateway.
"""

import sys

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="realtime",
    help="Restaurant realtime gateway CLI",
    add_completion=False,
)
console = Console()


# =============================================================================
# Server Commands
# =============================================================================

@app.command()
def serve(
    host: str = typer.Option(None, help="Bind address (default from settings)"),
    port: int = typer.Option(None, help="Port (default from settings)"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Run the WebSocket gateway with uvicorn."""
    import uvicorn

    from shared.config.settings import get_settings

    settings = get_settings()
    for error in settings.validate_production_secrets():
        console.print(f"[yellow]! {error}[/yellow]")

    uvicorn.run(
        "ws_gateway.main:create_default_app",
        factory=True,
        host=host or settings.ws_gateway_host,
        port=port or settings.ws_gateway_port,
        reload=reload,
    )


# =============================================================================
# Token Commands
# =============================================================================

@app.command()
def issue_token(
    user_id: str = typer.Argument(..., help="User id claim"),
    role: str = typer.Option("STAFF", help="Role claim"),
    branch: str = typer.Option(None, "--branch", "-b", help="Branch id claim"),
    name: str = typer.Option(None, help="Display name claim"),
    ttl: int = typer.Option(None, help="Lifetime in seconds (default from settings)"),
):
    """Sign a development token with the configured secret."""
    from shared.config.settings import get_settings
    from shared.security.auth import Identity, sign_token

    settings = get_settings()
    if settings.environment == "production":
        console.print("[red]Refusing to issue tokens in production[/red]")
        raise typer.Exit(1)

    identity = Identity(id=user_id, role=role, branch_id=branch, name=name)
    token = sign_token(
        identity,
        ttl if ttl is not None else settings.jwt_access_token_expire_minutes * 60,
        secret=settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    console.print(token, soft_wrap=True)


# =============================================================================
# WebSocket Commands
# =============================================================================

@app.command()
def ws_test(
    token: str = typer.Option(..., "--token", "-t", help="Credential to connect with"),
    url: str = typer.Option("ws://localhost:3001/ws", help="WebSocket URL"),
    seconds: float = typer.Option(10.0, help="How long to listen for frames"),
):
    """Connect, send a heartbeat and print every frame received."""
    import asyncio

    import websockets

    from ws_client.connection_manager import with_token

    async def _test():
        console.print(f"[blue]Testing WebSocket: {url}[/blue]")

        try:
            async with websockets.connect(with_token(url, token), close_timeout=5) as ws:
                await ws.send('{"type": "ping"}')
                loop = asyncio.get_running_loop()
                deadline = loop.time() + seconds
                while (remaining := deadline - loop.time()) > 0:
                    try:
                        frame = await asyncio.wait_for(ws.recv(), timeout=remaining)
                    except asyncio.TimeoutError:
                        break
                    console.print(f"[green]<[/green] {frame}")
        except websockets.exceptions.ConnectionClosed as e:
            code = e.rcvd.code if e.rcvd else None
            reason = e.rcvd.reason if e.rcvd else ""
            console.print(f"[red]✗ Closed by server: {code} {reason}[/red]")
            raise typer.Exit(1)
        except (OSError, websockets.exceptions.WebSocketException) as e:
            console.print(f"[red]✗ Connection failed: {e}[/red]")
            raise typer.Exit(1)

        console.print("[green]✓ Done[/green]")

    asyncio.run(_test())


# =============================================================================
# Health Commands
# =============================================================================

@app.command()
def health(
    url: str = typer.Option("http://localhost:3001/health", help="Gateway health URL"),
):
    """Check gateway health."""
    import httpx

    table = Table(title="WS Gateway Health")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")

    try:
        response = httpx.get(url, timeout=5.0)
    except httpx.HTTPError as e:
        console.print(f"[red]✗ {type(e).__name__}: {e}[/red]")
        raise typer.Exit(1)

    if response.status_code != 200:
        console.print(f"[red]✗ Status {response.status_code}[/red]")
        raise typer.Exit(1)

    for key, value in response.json().items():
        table.add_row(key, str(value))
    table.add_row("response time", f"{response.elapsed.total_seconds() * 1000:.0f}ms")
    console.print(table)


@app.command()
def version():
    """Show version information."""
    from ws_gateway import __version__

    table = Table(title="Realtime Gateway Version")
    table.add_column("Component", style="cyan")
    table.add_column("Version", style="green")

    table.add_row("Gateway", __version__)
    table.add_row("Python", sys.version.split()[0])

    console.print(table)


if __name__ == "__main__":
    app()
