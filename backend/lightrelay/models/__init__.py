from .command_queue import LightCommand
from .settings import ApplicationSetting

__all__ = [
    "LightCommand",
    "ApplicationSetting",
]
