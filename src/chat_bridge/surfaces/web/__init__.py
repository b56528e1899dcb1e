from .app import create_app
from .app_state import build_dispatcher

__all__ = ["build_dispatcher", "create_app"]
