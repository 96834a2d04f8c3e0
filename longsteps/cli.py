"""Command line interface for running longsteps sweeps."""

from __future__ import annotations

import asyncio
import importlib
import json
import logging
from typing import Any, List, Optional

import typer

from longsteps import LongSteps, ProcessNotFound, UnknownProcessType, load_config
from longsteps.errors import InvalidInitialStep

app = typer.Typer(help="CLI for longsteps processes")


def _import_option() -> Any:
    return typer.Option(
        [], "--import", "-i", help="Module to import so its process types get registered"
    )


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, help="Override the configured log level"),
) -> None:
    """longsteps CLI entry point."""
    config = load_config()
    logging.basicConfig(
        level=(log_level or config.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _import_modules(modules: List[str]) -> None:
    for module in modules:
        try:
            importlib.import_module(module)
        except ImportError as exc:
            typer.secho(f"Cannot import {module}: {exc}", fg=typer.colors.RED)
            raise typer.Exit(code=1)


def _parse_json(value: Optional[str], option: str) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"invalid JSON: {exc}", param_hint=option)


async def _sweep(
    manager: LongSteps,
    context: dict,
    interval: Optional[float],
    lifespan: Optional[float],
) -> int:
    loop = asyncio.get_running_loop()
    start_time = loop.time()
    total = 0
    while True:
        total += await manager.run_due_processes(context)
        if interval is None:
            return total
        if lifespan is not None and loop.time() - start_time >= lifespan:
            return total
        await asyncio.sleep(interval)


@app.command("run")
def run(
    modules: List[str] = _import_option(),
    context_json: Optional[str] = typer.Option(
        None, "--context-json", help="JSON object injected as context into every process"
    ),
    interval: Optional[float] = typer.Option(
        None, help="Seconds between sweeps (default: run a single sweep)"
    ),
    lifespan: Optional[float] = typer.Option(
        None, help="Stop sweeping after this many seconds (default: run indefinitely)"
    ),
) -> None:
    """
    Run the due steps of all processes.

    Example:
        longsteps run -i myapp.processes
        longsteps run -i myapp.processes --interval 60 --lifespan 3600
    """
    _import_modules(modules)
    context = _parse_json(context_json, "--context-json") or {}
    manager = LongSteps.from_config()
    total = asyncio.run(_sweep(manager, context, interval, lifespan))
    typer.echo(f"Ran {total} process step(s)")


@app.command("instantiate")
def instantiate(
    process_type: str,
    modules: List[str] = _import_option(),
    state_json: Optional[str] = typer.Option(
        None, "--state-json", help="Initial state as JSON"
    ),
    args_json: Optional[str] = typer.Option(
        None, "--args-json", help="Build arguments (context) as a JSON object"
    ),
) -> None:
    """
    Start a new process and print its id.

    Example:
        longsteps instantiate myapp.processes.OrderReminder --state-json '{"order_id": 42}'
    """
    _import_modules(modules)
    manager = LongSteps.from_config()
    try:
        record = asyncio.run(
            manager.instantiate_process(
                process_type,
                _parse_json(args_json, "--args-json"),
                _parse_json(state_json, "--state-json"),
            )
        )
    except (UnknownProcessType, InvalidInitialStep) as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(record.id)


@app.command("show")
def show(process_id: str) -> None:
    """Show the stored data of a process."""
    manager = LongSteps.from_config()
    try:
        record = asyncio.run(manager.get_process(process_id))
    except ProcessNotFound:
        typer.echo("Process not found")
        raise typer.Exit(code=1)
    typer.echo(f"Process {record.id} ({record.process_type}): {record.status.value}")
    if record.current_step:
        typer.echo(f"Next step: {record.current_step} at {record.run_at}")
    if record.last_step:
        typer.echo(f"Last step: {record.last_step}")
    typer.echo(f"State: {json.dumps(record.state)}")
    if record.last_error:
        typer.secho(f"Error: {record.last_error}", fg=typer.colors.RED)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
