import asyncio
import json
from pathlib import Path
from typing import Any, Callable, Optional

import typer

from ....integrations.chat.factory import create_state_adapter
from ....integrations.chat.state_store import StateAdapter


async def _with_state(state: StateAdapter, work: Callable[[StateAdapter], Any]) -> Any:
    await state.connect()
    try:
        return await work(state)
    finally:
        await state.disconnect()


def register_state_commands(
    state_app: typer.Typer,
    *,
    require_bridge_config: Callable,
    raise_exit: Callable,
) -> None:
    @state_app.command("list-subscriptions")
    def list_subscriptions(
        path: Optional[Path] = typer.Option(None, "--path", help="Project root"),
        prefix: Optional[str] = typer.Option(
            None, "--prefix", help="Only threads starting with this prefix"
        ),
    ):
        config = require_bridge_config(path)
        if config.state.backend == "memory":
            raise_exit("The memory state backend does not persist subscriptions.")

        async def _collect(state: StateAdapter) -> list[str]:
            return [thread_id async for thread_id in state.list_subscriptions(prefix)]

        for thread_id in asyncio.run(
            _with_state(create_state_adapter(config.state), _collect)
        ):
            typer.echo(thread_id)

    @state_app.command("get")
    def get_value(
        key: str = typer.Argument(..., help="State key"),
        path: Optional[Path] = typer.Option(None, "--path", help="Project root"),
    ):
        config = require_bridge_config(path)

        async def _get(state: StateAdapter) -> Any:
            return await state.get(key)

        value = asyncio.run(_with_state(create_state_adapter(config.state), _get))
        if value is None:
            raise_exit(f"No value for {key}")
        typer.echo(json.dumps(value, indent=2, sort_keys=True))
