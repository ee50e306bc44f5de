from fastapi import Request

from ..services.command_producer import LightCommandProducer
from ..services.light_client import LightClient
from ..services.queue_janitor import QueueJanitor
from ..services.settings_service import SettingsService


def get_producer(request: Request) -> LightCommandProducer:
    return request.app.state.producer


def get_janitor(request: Request) -> QueueJanitor:
    return request.app.state.janitor


def get_settings_service(request: Request) -> SettingsService:
    return request.app.state.settings_service


def get_light_client(request: Request) -> LightClient:
    return request.app.state.light_client
