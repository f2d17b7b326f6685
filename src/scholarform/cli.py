from __future__ import annotations

import logging
from pathlib import Path

import typer

from scholarform.config import Settings
from scholarform.editor import FormEditor
from scholarform.errors import ScholarFormError
from scholarform.schema import normalize_schema_report, schema_to_payload
from scholarform.storage import init_storage
from scholarform.utils import dumps_json, loads_json

cli = typer.Typer(add_completion=False)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def run_server(host: str | None, port: int | None) -> None:
    import uvicorn

    from scholarform.app import create_app

    settings = Settings()
    configure_logging(settings)
    resolved_host = host or settings.host
    resolved_port = port if port is not None else settings.port
    uvicorn.run(create_app(settings), host=resolved_host, port=resolved_port)


@cli.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    host: str | None = typer.Option(None, help="Dirección donde escuchar"),
    port: int | None = typer.Option(None, help="Puerto donde escuchar"),
) -> None:
    ctx.obj = {"host": host, "port": port}
    if ctx.invoked_subcommand is None:
        run_server(host, port)


@cli.command()
def run(
    ctx: typer.Context,
    host: str | None = typer.Option(None, help="Dirección donde escuchar"),
    port: int | None = typer.Option(None, help="Puerto donde escuchar"),
) -> None:
    base = ctx.obj or {}
    resolved_host = host or base.get("host")
    resolved_port = port if port is not None else base.get("port")
    run_server(resolved_host, resolved_port)


@cli.command()
def normalize(path: Path = typer.Argument(..., exists=True, dir_okay=False)) -> None:
    """Print the normalized form of a stored schema document."""
    try:
        raw = loads_json(path.read_bytes())
    except ValueError as exc:
        typer.echo(f"JSON inválido: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    schema, issues = normalize_schema_report(raw)
    for issue in issues:
        typer.echo(f"{issue.location}: {issue.message}", err=True)
    typer.echo(dumps_json(schema_to_payload(schema)))


@cli.command()
def clone(from_call: str, to_call: str) -> None:
    """Copy the form of one call into another."""
    settings = Settings()
    configure_logging(settings)
    storage = init_storage(settings)
    if storage.schemas.get_schema(from_call) is None:
        typer.echo(f"No existe un formulario para {from_call}", err=True)
        raise typer.Exit(code=1)
    editor = FormEditor(storage, to_call)
    editor.clone_from(from_call)
    try:
        saved = editor.save()
    except ScholarFormError as exc:
        typer.echo(exc.message, err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(f"{to_call}: versión {saved.version}")


if __name__ == "__main__":
    cli()
