"""relkit CLI - Main entry point."""

import logging
from typing import Annotated

import typer

import relkit
from relkit.cli.context import CLIContext, get_config_path

app = typer.Typer(
    name="relkit",
    help="relkit CLI - DDL rendering and connection pool checks",
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    config: Annotated[
        str | None,
        typer.Option(
            "--config",
            "-c",
            envvar="RELKIT_CONFIG",
            help="Path to the TOML configuration",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            "-j",
            help="Output as JSON (machine-readable)",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log pool and driver activity"),
    ] = False,
) -> None:
    """Initialize CLI context with global options."""
    logging.basicConfig(level=logging.INFO if verbose else logging.WARNING)
    ctx.obj = CLIContext(config_path=get_config_path(config), json_output=json_output)


@app.command()
def version() -> None:
    """Show version information."""
    typer.echo(f"relkit v{relkit.__version__}")


from relkit.cli.commands import pools, schema  # noqa: E402

app.command(name="ddl")(schema.ddl_command)
app.command(name="pools")(pools.pools_command)
app.command(name="check")(pools.check_command)


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
