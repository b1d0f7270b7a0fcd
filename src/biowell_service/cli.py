"""CLI entry point for biowell-service."""

import asyncio

import typer
import uvicorn

from biowell_service import __version__
from biowell_service.core.config import settings
from biowell_service.services.container import ServiceContainer

app = typer.Typer(
    name="biowell-service",
    help="Data service for the Biowell wellness dashboard",
    no_args_is_help=True,
)


@app.command()
def serve(
    host: str = typer.Option(None, help="Host to bind to (overrides config)"),
    port: int = typer.Option(None, help="Port to bind to (overrides config)"),
    reload: bool = typer.Option(False, help="Enable auto-reload for development"),
) -> None:
    """Start the API server.

    Example:
        biowell-service serve
        biowell-service serve --host 0.0.0.0 --port 8080 --reload
    """
    uvicorn.run(
        "biowell_service.app:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


async def _seed(user_id: str, seed: int | None) -> tuple[int, list[int]]:
    services = await ServiceContainer.create(settings)
    try:
        written = await services.metrics.seed_history(user_id, seed=seed)
        return written, services.batch_writer.last_failed_chunks
    finally:
        await services.close()


@app.command()
def seed(
    user_id: str = typer.Argument(..., help="User to generate history for"),
    seed: int = typer.Option(None, help="Random seed for a reproducible history"),
) -> None:
    """Synthesize wearable and CGM history for a user and store it.

    Example:
        biowell-service seed user-123 --seed 42
    """
    written, failed = asyncio.run(_seed(user_id, seed))
    typer.echo(f"Stored {written} records for {user_id}")
    if failed:
        typer.echo(f"{len(failed)} chunk(s) failed: {failed}", err=True)
        raise typer.Exit(code=1)


@app.command()
def version() -> None:
    """Show version information."""
    typer.echo(f"biowell-service v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
