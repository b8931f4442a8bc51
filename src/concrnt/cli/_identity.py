"""concrnt keygen / whoami / token."""

from __future__ import annotations

import asyncio
import json
from typing import Any

from rich.console import Console

from concrnt.cli._common import fail, load_or_exit
from concrnt.core.config import _config_file_path, save_config
from concrnt.core.constants import ExitCode
from concrnt.core.exceptions import ConcrntError, InvalidKeyError
from concrnt.identity.keys import generate_key, load_key, load_subkey
from concrnt.identity.token import parse_bearer_token


def cmd_keygen(
    save: bool,
    host: str,
    use_keyring: bool,
    force: bool,
    as_json: bool,
    console: Console,
) -> None:
    keypair = generate_key()

    if save:
        if not host:
            fail(console, "--host is required with --save", ExitCode.CONFIG_ERROR)
        cfg_path = _config_file_path()
        if cfg_path.exists() and not force:
            fail(console, f"{cfg_path} already exists (use --force to overwrite)", ExitCode.CONFIG_ERROR)
        secret = keypair.private_key
        if use_keyring:
            from concrnt.core.keyring_store import store_token

            try:
                secret = store_token(keypair.ccid, keypair.private_key)
            except ConcrntError as exc:
                fail(console, str(exc), ExitCode.CONFIG_ERROR)
        saved = save_config({"identity": {"host": host, "private_key": secret}}, cfg_path)
    else:
        saved = None

    if as_json:
        data = {"ccid": keypair.ccid, "public_key": keypair.public_key}
        if saved is None:
            data["private_key"] = keypair.private_key
        else:
            data["config"] = str(saved)
        print(json.dumps(data, indent=2))
        return

    console.print(f"[bold]CCID[/bold]         {keypair.ccid}")
    console.print(f"[bold]Public key[/bold]   {keypair.public_key}")
    if saved is None:
        console.print(f"[bold]Private key[/bold]  {keypair.private_key}")
        console.print("\n[yellow]Keep the private key secret. It cannot be recovered.[/yellow]")
    else:
        console.print(f"\nSaved to [cyan]{saved}[/cyan]")


def cmd_whoami(as_json: bool, console: Console) -> None:
    config = load_or_exit(console)
    data: dict[str, str | None] = {"host": config.identity.host, "ccid": None, "ckid": None, "mode": "guest"}
    try:
        if secret := config.subkey_secret():
            subkey = load_subkey(secret)
            if subkey is None:
                fail(console, "identity.subkey is malformed", ExitCode.KEY_ERROR)
            data.update(host=subkey.domain, ccid=subkey.ccid, ckid=subkey.ckid, mode="subkey")
        elif private_key := config.private_key_hex():
            data.update(ccid=load_key(private_key).ccid, mode="root key")
        elif config.identity.token is not None:
            data.update(ccid=parse_bearer_token(config.identity.token.get_secret_value()).get("iss"), mode="token")
    except InvalidKeyError as exc:
        fail(console, str(exc), ExitCode.KEY_ERROR)
    except ConcrntError as exc:
        fail(console, str(exc), ExitCode.CONFIG_ERROR)

    if as_json:
        print(json.dumps(data, indent=2))
        return
    console.print(f"[bold]Host[/bold]  {data['host']}")
    console.print(f"[bold]CCID[/bold]  {data['ccid'] or '—'}")
    if data["ckid"]:
        console.print(f"[bold]CKID[/bold]  {data['ckid']}")
    console.print(f"[bold]Mode[/bold]  {data['mode']}")


def cmd_token(audience: str, show_claims: bool, console: Console) -> None:
    from concrnt.api import Api

    config = load_or_exit(console)

    async def _mint() -> tuple[str, dict[str, Any]]:
        async with Api.from_config(config) as api:
            if audience and audience != api.host:
                token = api.transport.mint(audience)
                return token, parse_bearer_token(token)
            return api.transport.home_token(), api.transport.token_claims()

    try:
        token, claims = asyncio.run(_mint())
    except InvalidKeyError as exc:
        fail(console, str(exc), ExitCode.KEY_ERROR)
    except ConcrntError as exc:
        fail(console, str(exc), ExitCode.CONFIG_ERROR)

    print(token)
    if show_claims:
        console.print_json(data=claims)
