# API module
from .routes import router as api_router
from .websocket import router as ws_router, ConnectionManager

__all__ = ["api_router", "ws_router", "ConnectionManager"]
