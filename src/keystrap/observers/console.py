# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/keystrap/observers/console.py
import typer

from .events import BaseEvent, StepFailed, StepSkipped, StepSucceeded


class ConsoleObserver:
    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        k = event.__class__.__name__
        if isinstance(event, StepSucceeded):
            typer.secho(f"[{d['host']}] ok      {event.step} -> {event.state}", fg=typer.colors.GREEN)
        elif isinstance(event, StepSkipped):
            typer.secho(f"[{d['host']}] skipped {event.step} ({event.reason})", fg=typer.colors.YELLOW)
        elif isinstance(event, StepFailed):
            typer.secho(f"[{d['host']}] FAILED  {event.step}: {event.kind}: {event.error}", fg=typer.colors.RED, err=True)
        else:
            typer.echo(f"[{d['ts']}] {k} run={d['run_id']} host={d['host']} data={{"
                       + ", ".join(f"{x}={y}" for x, y in d.items() if x not in ('ts', 'run_id', 'host')) + "}")
