"""
concrnt CLI entry point.

Commands:
  concrnt keygen [--save]          — generate a key (optionally write it to config)
  concrnt whoami                   — show the configured identity
  concrnt resolve <ccid>           — find the domain hosting an identity
  concrnt domain [fqdn]            — check a domain and show its record
  concrnt token [--audience]       — mint a bearer token for scripting
  concrnt tail <timeline>...       — follow timelines live
  concrnt version                  — show version information
"""

from __future__ import annotations

import click
from rich.console import Console

from concrnt import __version__

console = Console()
err_console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, "--version", "-V", message="concrnt %(version)s")
def cli() -> None:
    """concrnt — client for a federated network of signed social objects."""


# ---------------------------------------------------------------------------
# identity
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--save", is_flag=True, default=False, help="Write the key to the config file")
@click.option("--host", default="", help="Home domain to record with --save")
@click.option("--keyring", "use_keyring", is_flag=True, default=False, help="Store the key in the OS keyring")
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing config")
@click.option("--json", "as_json", is_flag=True, default=False)
def keygen(save: bool, host: str, use_keyring: bool, force: bool, as_json: bool) -> None:
    """Generate a new identity key."""
    from concrnt.cli._identity import cmd_keygen

    cmd_keygen(
        save=save,
        host=host,
        use_keyring=use_keyring,
        force=force,
        as_json=as_json,
        console=console,
    )


@cli.command()
@click.option("--json", "as_json", is_flag=True, default=False)
def whoami(as_json: bool) -> None:
    """Show the configured identity."""
    from concrnt.cli._identity import cmd_whoami

    cmd_whoami(as_json=as_json, console=console)


@cli.command()
@click.option("--audience", default="", help="Audience domain (default: home domain)")
@click.option("--claims", "show_claims", is_flag=True, default=False, help="Print decoded claims too")
def token(audience: str, show_claims: bool) -> None:
    """Mint a short-lived bearer token."""
    from concrnt.cli._identity import cmd_token

    cmd_token(audience=audience, show_claims=show_claims, console=console)


# ---------------------------------------------------------------------------
# lookups
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("ccid")
@click.option("--hint", default="", help="Domain to ask first")
@click.option("--json", "as_json", is_flag=True, default=False)
def resolve(ccid: str, hint: str, as_json: bool) -> None:
    """Find the domain currently hosting CCID."""
    from concrnt.cli._lookup import cmd_resolve

    cmd_resolve(ccid=ccid, hint=hint or None, as_json=as_json, console=console)


@cli.command()
@click.argument("fqdn", default="")
@click.option("--json", "as_json", is_flag=True, default=False)
def domain(fqdn: str, as_json: bool) -> None:
    """Check FQDN (default: home domain) is live and show its record."""
    from concrnt.cli._lookup import cmd_domain

    cmd_domain(fqdn=fqdn or None, as_json=as_json, console=console)


# ---------------------------------------------------------------------------
# tail
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("timelines", nargs=-1, required=True)
@click.option("--limit", default=0, help="Exit after this many events (0 = run until interrupted)")
@click.option("--json", "as_json", is_flag=True, default=False)
def tail(timelines: tuple[str, ...], limit: int, as_json: bool) -> None:
    """Follow TIMELINES and print events as they arrive."""
    from concrnt.cli._tail import cmd_tail

    cmd_tail(timelines=list(timelines), limit=limit, as_json=as_json, console=console)


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--json", "as_json", is_flag=True, default=False)
def version(as_json: bool) -> None:
    """Show version information."""
    import platform
    import sys as _sys

    if as_json:
        import json

        click.echo(
            json.dumps(
                {
                    "concrnt": __version__,
                    "python": _sys.version.split()[0],
                    "platform": _sys.platform,
                    "arch": platform.machine(),
                },
                indent=2,
            )
        )
    else:
        console.print(f"concrnt {__version__}")
        console.print(f"Python {_sys.version.split()[0]}")
        console.print(f"Platform: {_sys.platform} {platform.machine()}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
