from .replication_api import app, replication_router, get_controller, set_controller

__all__ = ["app", "replication_router", "get_controller", "set_controller"]
