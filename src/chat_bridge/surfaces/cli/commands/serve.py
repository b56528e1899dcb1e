from pathlib import Path
from typing import Callable, Optional

import typer
import uvicorn

from ....core.exceptions import ChatBridgeError
from ....core.logging_utils import setup_logging
from ...web.app import create_app
from ...web.app_state import build_dispatcher


def register_serve_commands(
    app: typer.Typer,
    *,
    require_bridge_config: Callable,
    raise_exit: Callable,
) -> None:
    @app.command("serve")
    def serve(
        path: Optional[Path] = typer.Option(None, "--path", help="Project root"),
        config_path: Optional[Path] = typer.Option(
            None, "--config", help="Config file (default: <root>/chat-bridge.yml)"
        ),
        host: Optional[str] = typer.Option(None, "--host", help="Host to bind"),
        port: Optional[int] = typer.Option(None, "--port", help="Port to bind"),
        log_level: str = typer.Option("INFO", "--log-level", help="Log level"),
    ):
        config = require_bridge_config(path, config_path)
        setup_logging(log_level)
        try:
            dispatcher = build_dispatcher(config)
        except ChatBridgeError as exc:
            raise_exit(str(exc), cause=exc)
        if not dispatcher.adapters:
            typer.echo("Warning: no platform adapters are enabled.", err=True)
        bind_host = host or config.server.host
        bind_port = port or config.server.port
        typer.echo(f"Serving chat bridge on http://{bind_host}:{bind_port}")
        uvicorn.run(
            create_app(dispatcher),
            host=bind_host,
            port=bind_port,
            log_level=log_level.lower(),
        )
