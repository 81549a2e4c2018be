# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/keystrap/cli/app.py
from __future__ import annotations

import signal
import threading
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from keystrap.bootstrap.orchestrator import BootstrapOrchestrator, plan_steps
from keystrap.config.loader import load_settings
from keystrap.logging.log import init_logging, redact
from keystrap.models import BootstrapRequest
from keystrap.observers.console import ConsoleObserver
from keystrap.observers.dispatcher import EventBus
from keystrap.observers.jsonfile import JsonFileObserver
from keystrap.observers.logger import LoggerObserver


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(
    help="Bootstrap key-based SSH authentication on a password-only Linux host.",
    no_args_is_help=True,
)


def _install_cancel_handler(cancel: threading.Event):
    """
    First Ctrl-C lets the running step finish and stops the run;
    a second one interrupts immediately.
    """
    def _handler(signum, frame):
        if cancel.is_set():
            signal.signal(signal.SIGINT, signal.default_int_handler)
            raise KeyboardInterrupt
        typer.secho("\nInterrupt received - stopping after the current step (Ctrl-C again to abort).",
                    fg=typer.colors.YELLOW, err=True)
        cancel.set()

    return signal.signal(signal.SIGINT, _handler)


@app.command()
def bootstrap(
    host: str = typer.Argument(..., help="IP address or hostname of the remote machine"),
    username: str = typer.Argument(..., help="Remote user to authenticate as"),
    password_arg: Optional[str] = typer.Argument(None, metavar="[PASSWORD]", show_default=False),
    port_arg: Optional[str] = typer.Argument(None, metavar="[SSH_PORT]", help="Defaults to 22"),
    disable_arg: Optional[str] = typer.Argument(
        None, metavar="[DISABLE_PASSWORD_AUTH]", help="true/false, defaults to false"
    ),
    password: Optional[str] = typer.Option(
        None, "--password", envvar="KEYSTRAP_PASSWORD", help="Login password (prompted if omitted)"
    ),
    port: Optional[str] = typer.Option(None, "--port", "-p"),
    disable_password_auth: Optional[str] = typer.Option(None, "--disable-password-auth"),
    host_id: Optional[str] = typer.Option(None, "--host-id", help="Alias used for key file and ssh config"),
    config: Optional[Path] = typer.Option(None, "--config", help="keystrap YAML settings"),
    debug: bool = typer.Option(False, "--debug"),
    quiet: bool = typer.Option(False, "--quiet", help="No per-step console output"),
):
    """
    Generate a key pair, register the host in ~/.ssh/config, install the public
    key on the remote host and enable public key authentication. With
    DISABLE_PASSWORD_AUTH=true the host is switched to key-only logins.
    """
    try:
        settings = load_settings(config)
    except (OSError, ValueError) as e:
        raise typer.BadParameter(str(e), param_hint="--config")

    logger, run_id, log_path = init_logging(base_dir=settings.log_dir, verbose=debug)

    secret = password if password is not None else password_arg
    if secret is None:
        secret = typer.prompt(f"Password for {username}@{host}", hide_input=True)
    redact(secret)

    try:
        request = BootstrapRequest(
            host=host,
            username=username,
            password=secret,
            port=port if port is not None else port_arg,
            disable_password_auth=disable_password_auth if disable_password_auth is not None else disable_arg,
            host_id=host_id,
        )
    except ValidationError as e:
        raise typer.BadParameter(str(e))

    observers = [
        LoggerObserver(logger),
        JsonFileObserver(settings.log_dir / f"{run_id}.jsonl"),
    ]
    if not quiet:
        observers.insert(0, ConsoleObserver())

    cancel = threading.Event()
    previous = _install_cancel_handler(cancel)
    try:
        outcome = BootstrapOrchestrator(
            request,
            settings=settings,
            bus=EventBus(observers=observers),
            cancel_event=cancel,
            run_id=run_id,
        ).run()
    finally:
        signal.signal(signal.SIGINT, previous)

    if outcome.succeeded:
        typer.secho(f"SSH setup completed successfully. ({outcome.summary()})", fg=typer.colors.GREEN)
        typer.echo(f"Connect with: ssh {request.host_id}")
        return

    typer.secho(outcome.summary(), fg=typer.colors.RED, err=True)
    typer.echo(f"Full log: {log_path}", err=True)
    raise typer.Exit(code=1)


@app.command()
def plan(
    disable_password_auth: bool = typer.Option(False, "--disable-password-auth"),
):
    """
    Print the steps a bootstrap run would execute, in order.
    """
    for i, name in enumerate(plan_steps(disable_password_auth), 1):
        typer.echo(f"{i:2d}. {name}")


if __name__ == "__main__":
    app()
