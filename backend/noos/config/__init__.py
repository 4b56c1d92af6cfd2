# Config module
from noos.config.settings import Settings, settings
from noos.config.logging import configure_logging

__all__ = ["Settings", "settings", "configure_logging"]
