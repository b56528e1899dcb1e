import json
from typing import Callable, Optional

import typer

from ....integrations.chat.errors import MalformedIdentityError
from ....integrations.chat.thread_ids import ThreadIdCodec, platform_of


def register_thread_id_commands(
    thread_id_app: typer.Typer, *, raise_exit: Callable
) -> None:
    @thread_id_app.command("encode")
    def encode(
        platform: str = typer.Argument(..., help="Platform prefix, e.g. gchat"),
        primary: str = typer.Argument(..., help="Container id, e.g. spaces/AAA"),
        sub_scope: Optional[str] = typer.Option(
            None, "--sub-scope", help="Backend thread name"
        ),
        dm: bool = typer.Option(False, "--dm", help="Mark as a direct message"),
    ):
        try:
            codec = ThreadIdCodec(platform)
            typer.echo(codec.encode_parts(primary, sub_scope, is_dm=dm))
        except (MalformedIdentityError, ValueError) as exc:
            raise_exit(str(exc), cause=exc)

    @thread_id_app.command("decode")
    def decode(
        thread_id: str = typer.Argument(..., help="Thread id to decode"),
    ):
        try:
            scope = ThreadIdCodec(platform_of(thread_id)).decode(thread_id)
        except (MalformedIdentityError, ValueError) as exc:
            raise_exit(str(exc), cause=exc)
        typer.echo(
            json.dumps(
                {
                    "platform": scope.platform,
                    "primary": scope.primary,
                    "sub_scope": scope.sub_scope,
                    "is_dm": scope.is_dm,
                }
            )
        )
