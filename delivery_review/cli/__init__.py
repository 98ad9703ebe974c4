"""
Command Line Interface for the Delivery Review engine.
"""

from datetime import timedelta
from typing import Optional

import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import get_settings
from ..db.base import get_session_local, init_database
from ..engine.clock import SystemClock
from ..engine.enums import ActorRole
from ..engine.errors import LifecycleError
from ..engine.jobs import find_overrun_items, reconcile_late_items
from ..engine.notifications import LoggingNotifier
from ..engine.primitives import Actor, isoformat
from ..engine.services import ReviewLinkService
from ..log_config import configure_logging

app = typer.Typer(help="Delivery Review - delivery and review lifecycle engine")
console = Console()


def _operator(actor_id: str) -> Actor:
    return Actor(actor_id=actor_id, role=ActorRole.ADMIN)


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
    dev: bool = typer.Option(False, help="Run in development mode (auto-reload)"),
):
    """Start the HTTP API."""
    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    rprint(Panel.fit("Starting Delivery Review engine", style="bold blue"))
    console.print(f"Listening on http://{host}:{port}")
    uvicorn.run(
        "delivery_review.main:app",
        host=host,
        port=port,
        reload=dev,
        workers=1 if dev else settings.api_workers,
    )


@app.command()
def init_db():
    """Create all database tables."""
    configure_logging()
    init_database()
    console.print("✅ Database initialized")


@app.command()
def reconcile_late(
    dry_run: bool = typer.Option(False, help="Only list the items that would be marked"),
):
    """Mark active work items whose timer or deadline ran out as late."""
    configure_logging()
    clock = SystemClock()
    db = get_session_local()()
    try:
        if dry_run:
            items = find_overrun_items(db, clock)
            table = Table(title="Overrun work items", show_header=True, header_style="bold magenta")
            table.add_column("ID", style="cyan")
            table.add_column("Title")
            table.add_column("Assignee", style="yellow")
            table.add_column("Started", style="green")
            for item in items:
                table.add_row(
                    item.id, item.title, item.assigned_to or "-", isoformat(item.started_at) or "-"
                )
            console.print(table)
            return

        marked = reconcile_late_items(db, clock=clock, notifier=LoggingNotifier())
    finally:
        db.close()

    console.print(f"✅ Marked {len(marked)} work item(s) late")
    for work_item_id in marked:
        console.print(f"  • {work_item_id}")


@app.command()
def issue_link(
    work_item_id: str = typer.Argument(..., help="Work item to share"),
    delivery_id: Optional[str] = typer.Option(None, help="Limit the link to one delivery"),
    ttl_days: Optional[int] = typer.Option(None, help="Lifetime in days"),
    supersede: bool = typer.Option(False, help="Revoke earlier links for the same target"),
    actor_id: str = typer.Option("cli", help="Operator issuing the link"),
):
    """Issue a review link and print its token."""
    configure_logging()
    db = get_session_local()()
    try:
        link = ReviewLinkService(db).issue(
            work_item_id,
            delivery_id=delivery_id,
            ttl=timedelta(days=ttl_days) if ttl_days else None,
            supersede=supersede,
            actor=_operator(actor_id),
        )
    except LifecycleError as e:
        console.print(f"❌ {e.message}")
        raise typer.Exit(code=1)
    finally:
        db.close()

    base_url = get_settings().review_base_url
    table = Table(title="Review link", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("ID", link.id)
    table.add_row("Token", link.token)
    table.add_row("Expires", isoformat(link.expires_at))
    if base_url:
        table.add_row("URL", f"{base_url.rstrip('/')}/review/{link.token}")
    console.print(table)


@app.command()
def revoke_link(
    link_id: str = typer.Argument(..., help="Review link ID"),
    actor_id: str = typer.Option("cli", help="Operator revoking the link"),
):
    """Revoke a review link."""
    configure_logging()
    db = get_session_local()()
    try:
        ReviewLinkService(db).revoke(link_id, _operator(actor_id))
    except LifecycleError as e:
        console.print(f"❌ {e.message}")
        raise typer.Exit(code=1)
    finally:
        db.close()
    console.print(f"✅ Revoked review link {link_id}")


@app.command()
def version():
    """Show version information."""
    from .. import __version__

    rprint(Panel.fit(f"Delivery Review v{__version__}", style="bold green"))


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
