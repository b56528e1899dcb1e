from pathlib import Path
from typing import NoReturn, Optional

import typer

from ....core.config import BridgeConfig, load_bridge_config
from ....core.exceptions import ConfigError


def raise_exit(message: str, *, cause: Optional[BaseException] = None) -> NoReturn:
    typer.echo(message, err=True)
    if cause is not None:
        raise typer.Exit(code=1) from cause
    raise typer.Exit(code=1)


def require_bridge_config(
    root: Optional[Path], config_path: Optional[Path] = None
) -> BridgeConfig:
    resolved_root = (root or Path.cwd()).resolve()
    try:
        return load_bridge_config(resolved_root, config_path)
    except ConfigError as exc:
        raise_exit(f"Invalid config: {exc}", cause=exc)
