"""concrnt resolve / domain — read-only lookups against the network."""

from __future__ import annotations

import asyncio
import json

from rich.console import Console
from rich.table import Table

from concrnt.cli._common import fail, load_or_exit
from concrnt.core.constants import ExitCode
from concrnt.core.exceptions import FetchError
from concrnt.models.core import Domain, Entity


def cmd_resolve(ccid: str, hint: str | None, as_json: bool, console: Console) -> None:
    from concrnt.api import Api
    from concrnt.identity.keys import is_ccid

    if not is_ccid(ccid):
        fail(console, f"{ccid!r} is not a CCID", ExitCode.ERROR)
    config = load_or_exit(console)

    async def _resolve() -> Entity | None:
        async with Api.from_config(config) as api:
            return await api.get_entity(ccid, hint)

    try:
        entity = asyncio.run(_resolve())
    except FetchError as exc:
        fail(console, str(exc), ExitCode.NETWORK_ERROR)

    if entity is None:
        fail(console, f"{ccid} not found", ExitCode.NOT_FOUND)

    if as_json:
        print(entity.model_dump_json(by_alias=True, exclude_none=True, indent=2))
        return

    table = Table(title=ccid, show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Domain", entity.domain)
    table.add_row("Alias", entity.alias or "")
    table.add_row("Tag", entity.tag)
    table.add_row("Score", str(entity.score))
    table.add_row("Created", entity.cdate.isoformat() if entity.cdate else "")
    if entity.is_tombstoned:
        table.add_row("Status", "[red]tombstoned[/red]")
    console.print(table)


def cmd_domain(fqdn: str | None, as_json: bool, console: Console) -> None:
    from concrnt.api import Api

    config = load_or_exit(console)
    target = fqdn or config.identity.host

    async def _fetch() -> Domain | None:
        async with Api.from_config(config) as api:
            return await api.get_domain(target)

    domain = asyncio.run(_fetch())
    if domain is None:
        fail(console, f"{target} is unreachable or not a concrnt domain", ExitCode.NETWORK_ERROR)

    if as_json:
        print(json.dumps(domain.model_dump(mode="json", by_alias=True, exclude_none=True), indent=2))
        return

    console.print(f"[bold]{domain.fqdn}[/bold]  [green]online[/green]")
    console.print(f"  CCID   {domain.ccid}")
    if domain.csid:
        console.print(f"  CSID   {domain.csid}")
    for key in ("nickname", "description", "version"):
        if value := domain.meta.get(key):
            console.print(f"  {key.capitalize():<6} {value}")
