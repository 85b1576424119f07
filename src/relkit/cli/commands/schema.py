"""Schema commands: render DDL for entities declared in JSON."""

import json
from pathlib import Path
from typing import Annotated, Any

import typer

from relkit.cli.context import CLIContext
from relkit.cli.output import OutputFormatter
from relkit.schema.ddl import ddl_statements
from relkit.schema.registry import SchemaRegistry
from relkit.sql.dialect import Dialect


def read_entities(path: str) -> list[dict[str, Any]]:
    """Read entity descriptors from a JSON file.

    The file holds either a list of descriptors or an object with an
    `entities` list.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file has neither shape
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    with file_path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("entities")
    if not isinstance(data, list):
        raise ValueError(f"{path} must hold a list of entities or an object with 'entities'")
    return data


def ddl_command(
    ctx: typer.Context,
    path: Annotated[str, typer.Argument(help="JSON file with entity descriptors")],
    dialect: Annotated[
        str,
        typer.Option(
            "--dialect",
            "-D",
            help=f"Target dialect ({', '.join(Dialect.values())})",
        ),
    ] = "postgres",
    namespace: Annotated[
        str | None,
        typer.Option("--namespace", "-n", help="Table-name prefix"),
    ] = None,
) -> None:
    """Print CREATE TABLE and index DDL for entities declared in a JSON file."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        target = Dialect.parse(dialect)
        registry = SchemaRegistry(namespace)
        entities = [registry.register(descriptor) for descriptor in read_entities(path)]
        for entity in entities:
            formatter.print_sql(entity.table_name, ddl_statements(entity, target))
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
