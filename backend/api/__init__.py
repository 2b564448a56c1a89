# api/__init__.py
from api.server import app, build_webhook_processor, get_webhook_processor

__all__ = [
    "app",
    "build_webhook_processor",
    "get_webhook_processor",
]
