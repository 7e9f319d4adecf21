"""Control surface exports."""

from .app import create_control_app

__all__ = ["create_control_app"]
