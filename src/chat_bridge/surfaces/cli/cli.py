
import typer

from ... import __version__
from .commands.serve import register_serve_commands
from .commands.state import register_state_commands
from .commands.thread_ids import register_thread_id_commands
from .commands.utils import raise_exit as _raise_exit
from .commands.utils import require_bridge_config as _require_bridge_config


app = typer.Typer(add_completion=False)
thread_id_app = typer.Typer(add_completion=False)
state_app = typer.Typer(add_completion=False)


def _version_callback(value: bool) -> None:
    if not value:
        return
    typer.echo(f"chat-bridge {__version__}")
    raise typer.Exit(code=0)


@app.callback()
def _root(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    return


def main() -> None:
    """Entrypoint for CLI execution."""
    app()


register_serve_commands(
    app,
    require_bridge_config=_require_bridge_config,
    raise_exit=_raise_exit,
)
app.add_typer(thread_id_app, name="thread-id")
register_thread_id_commands(thread_id_app, raise_exit=_raise_exit)
app.add_typer(state_app, name="state")
register_state_commands(
    state_app,
    require_bridge_config=_require_bridge_config,
    raise_exit=_raise_exit,
)
