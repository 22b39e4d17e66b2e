import asyncio

import click


@click.group()
def main() -> None:
    """TaskFlow - multi-tenant task management service."""


@main.command()
@click.option("--host", default=None, help="Bind host (default: from TASKFLOW_HOST or 0.0.0.0).")
@click.option("--port", default=None, type=int, help="Bind port (default: from TASKFLOW_PORT or 8000).")
@click.option("--reload", is_flag=True, default=False, help="Enable auto-reload for development.")
def server(host: str | None, port: int | None, reload: bool) -> None:
    """Start the API server."""
    import uvicorn

    from taskflow.server.settings import TaskflowSettings

    settings = TaskflowSettings()

    uvicorn.run(
        "taskflow.server.app:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level="warning",  # uvicorn's own logging is intercepted by loguru
    )


@main.command("migrate-workspaces")
def migrate_workspaces() -> None:
    """Attach pre-workspace data to the CORE workspace (safe to re-run)."""
    from taskflow.server.log import setup_logging
    from taskflow.server.migration import MigrationError
    from taskflow.server.settings import get_settings

    settings = get_settings()
    setup_logging(settings.log_level, serialize=settings.log_json)
    if not settings.database_url:
        raise click.ClickException("TASKFLOW_DATABASE_URL is not set.")

    click.echo("TaskFlow workspace migration")
    try:
        report = asyncio.run(_migrate(settings.database_url, settings.company_name))
    except MigrationError as exc:
        raise click.ClickException(f"Migration failed: {exc}") from None

    click.echo("")
    click.echo(f"Workspace: {report.workspace_name} ({report.workspace_id})")
    click.echo(f"Created:   {'yes' if report.created else 'no (reused existing CORE workspace)'}")
    for label, total in report.totals.items():
        click.echo(f"  {label:<14} {total:>6} total, {report.migrated[label]} migrated")
    click.echo(f"Migration completed: {report.migrated_rows} rows moved.")


async def _migrate(database_url: str, company_name: str):
    from taskflow.server.db.engine import create_engine, create_session_factory
    from taskflow.server.migration import migrate_workspaces as run_migration

    engine = create_engine(database_url, pool_size=1, max_overflow=0)
    try:
        async with create_session_factory(engine)() as db:
            return await run_migration(db, company_name)
    finally:
        await engine.dispose()


@main.command()
@click.option("--url", default="http://localhost:8000", help="TaskFlow server URL.")
@click.option("--user-id", required=True, envvar="TASKFLOW_USER_ID", help="Identity to connect as.")
@click.option("--workspace-id", default=None, envvar="TASKFLOW_WORKSPACE_ID", help="Workspace override (admins).")
@click.option("--token", default=None, envvar="TASKFLOW_AUTH_TOKEN", help="Service bearer token.")
def watch(url: str, user_id: str, workspace_id: str | None, token: str | None) -> None:
    """Print the realtime event stream."""
    from taskflow.client.rest import TaskflowClient

    async def _watch() -> None:
        async with TaskflowClient(url, user_id, workspace_id=workspace_id, token=token) as client:
            async for event in client.stream_events():
                click.echo(f"{event.timestamp:%H:%M:%S} {event.channel:<40} {event.event:<22} {event.payload}")

    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        click.echo("Stopped.")


# ---------------------------------------------------------------------------
# Database management
# ---------------------------------------------------------------------------


def _alembic_config():
    """Build an Alembic Config from the package's alembic.ini.

    Both alembic.ini and the alembic/ directory live inside the package,
    so this works whether running from source or from an installed package.
    """
    from pathlib import Path

    from alembic.config import Config

    ini_path = Path(__file__).parent / "server" / "alembic.ini"
    return Config(str(ini_path))


@main.group()
def db() -> None:
    """Database migration and management commands."""


@db.command()
@click.option("--revision", default="head", help="Target revision (default: head).")
def upgrade(revision: str) -> None:
    """Run database migrations forward."""
    from alembic import command

    command.upgrade(_alembic_config(), revision)
    click.echo(f"Database upgraded to {revision}.")


@db.command()
@click.option("--revision", default="-1", help="Target revision (default: -1, one step back).")
def downgrade(revision: str) -> None:
    """Roll back database migrations."""
    from alembic import command

    command.downgrade(_alembic_config(), revision)
    click.echo(f"Database downgraded to {revision}.")


@db.command()
@click.argument("message")
def migrate(message: str) -> None:
    """Autogenerate a new migration from model changes."""
    from alembic import command

    command.revision(_alembic_config(), message=message, autogenerate=True)
    click.echo(f"Migration generated: {message}")


@db.command()
def current() -> None:
    """Show current database revision."""
    from alembic import command

    command.current(_alembic_config(), verbose=True)


@db.command()
def history() -> None:
    """Show migration history."""
    from alembic import command

    command.history(_alembic_config(), verbose=True)


if __name__ == "__main__":
    main()
