from .connection import get_client, build_controller

__all__ = ["get_client", "build_controller"]
