"""Pool commands: list configured pools and check their availability."""

import asyncio

import typer

from relkit.cli.context import CLIContext
from relkit.cli.output import OutputFormatter
from relkit.core.config import DatabaseSettings
from relkit.core.registry import ConnectionPools


def pools_command(ctx: typer.Context) -> None:
    """List the configured connection pools."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        settings = cli_ctx.get_settings()
        table_data = [
            {
                "Name": pool.name,
                "Database": pool.database,
                "Host": pool.host,
                "Port": pool.port or "",
                "Max connections": pool.max_connections,
                "Auto-migration": settings.auto_migration(pool),
                "Debug-only": settings.debug_only(pool),
            }
            for pool in settings.pools
        ]
        formatter.print_table(
            f"{settings.dialect} pools ({len(table_data)} total)",
            table_data,
            ["Name", "Database", "Host", "Port", "Max connections", "Auto-migration", "Debug-only"],
        )
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)


async def check_pools(settings: DatabaseSettings) -> list[dict[str, str]]:
    """Connect every configured pool and report its state."""
    pools = ConnectionPools.from_settings(settings)
    try:
        await pools.connect_all()
        return [
            {"Name": pool.name, "Database": pool.database, "State": pool.state.value}
            for pool in pools
        ]
    finally:
        await pools.close_all()


def check_command(ctx: typer.Context) -> None:
    """Connect to every pool and report availability (exit code 1 if any is down)."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        report = asyncio.run(check_pools(cli_ctx.get_settings()))
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)

    formatter.print_table("Pool availability", report, ["Name", "Database", "State"])
    if any(row["State"] != "available" for row in report):
        raise typer.Exit(code=1)
