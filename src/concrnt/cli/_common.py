"""Shared helpers for CLI commands."""

from __future__ import annotations

import sys
from typing import NoReturn

from rich.console import Console

from concrnt.core.config import ConcrntConfig, load_config
from concrnt.core.constants import ExitCode
from concrnt.core.exceptions import ConfigError, ConfigNotFoundError
from concrnt.core.log import configure_logging


def fail(console: Console, message: str, code: ExitCode = ExitCode.ERROR) -> NoReturn:
    console.print(f"[red]Error:[/red] {message}")
    sys.exit(int(code))


def load_or_exit(console: Console) -> ConcrntConfig:
    try:
        config = load_config()
    except ConfigNotFoundError as exc:
        console.print(f"[red]Not configured:[/red] {exc}")
        console.print("Run [cyan]concrnt keygen --save --host <domain>[/cyan] first.")
        sys.exit(int(ExitCode.CONFIG_ERROR))
    except ConfigError as exc:
        fail(console, f"config error: {exc}", ExitCode.CONFIG_ERROR)
    configure_logging(config.logging)
    return config
