from .settings import Settings, ReplicationSettings, LoggingSettings, APISettings, get_settings, reload_settings

__all__ = [
    "Settings",
    "ReplicationSettings",
    "LoggingSettings",
    "APISettings",
    "get_settings",
    "reload_settings",
]
