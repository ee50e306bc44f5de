"""
Direct device routes: fixture address configuration and LAN control
"""

from fastapi import APIRouter, Depends, HTTPException
from typing import Dict, Any, Optional
from pydantic import BaseModel, Field, StrictInt

from ..core.security import Caller, get_current_caller
from ..services.light_client import LightClient
from ..services.settings_service import SettingsService
from .dependencies import get_light_client, get_settings_service

router = APIRouter(prefix="/device", tags=["device"])


class DeviceConfig(BaseModel):
    ip_address: Optional[str] = None
    configured: bool


class DeviceConfigUpdate(BaseModel):
    ip_address: str = Field(min_length=1)


class RGBRequest(BaseModel):
    red: StrictInt
    green: StrictInt
    blue: StrictInt


async def _require_device(client: LightClient):
    if not await client.is_configured():
        raise HTTPException(status_code=409, detail="No ESP32 device configured")


@router.get("")
def get_device(
    caller: Caller = Depends(get_current_caller),
    settings_service: SettingsService = Depends(get_settings_service)
) -> DeviceConfig:
    ip = settings_service.get_device_ip()
    return DeviceConfig(ip_address=ip, configured=ip is not None)


@router.put("")
def update_device(
    request: DeviceConfigUpdate,
    caller: Caller = Depends(get_current_caller),
    settings_service: SettingsService = Depends(get_settings_service)
) -> DeviceConfig:
    settings_service.set_device_ip(request.ip_address)
    ip = settings_service.get_device_ip()
    return DeviceConfig(ip_address=ip, configured=ip is not None)


@router.delete("")
def clear_device(
    caller: Caller = Depends(get_current_caller),
    settings_service: SettingsService = Depends(get_settings_service)
) -> Dict[str, Any]:
    return {"cleared": settings_service.clear_device_ip()}


@router.post("/test")
async def test_device(
    caller: Caller = Depends(get_current_caller),
    client: LightClient = Depends(get_light_client)
) -> Dict[str, Any]:
    await _require_device(client)
    return {"connected": await client.test_connection()}


@router.post("/color")
async def set_color(
    request: RGBRequest,
    caller: Caller = Depends(get_current_caller),
    client: LightClient = Depends(get_light_client)
) -> Dict[str, Any]:
    await _require_device(client)
    return {"success": await client.set_rgb(request.red, request.green, request.blue)}


@router.post("/preset/{color_name}")
async def set_preset(
    color_name: str,
    caller: Caller = Depends(get_current_caller),
    client: LightClient = Depends(get_light_client)
) -> Dict[str, Any]:
    await _require_device(client)
    return {"success": await client.send_preset_color(color_name)}


@router.post("/theme")
async def send_theme(
    theme_data: Dict[str, Any],
    caller: Caller = Depends(get_current_caller),
    client: LightClient = Depends(get_light_client)
) -> Dict[str, Any]:
    """Forward a theme animation pattern (colors plus timing) to the fixture"""
    await _require_device(client)
    return {"success": await client.send_theme(theme_data)}


@router.post("/rainbow")
async def start_rainbow(
    caller: Caller = Depends(get_current_caller),
    client: LightClient = Depends(get_light_client)
) -> Dict[str, Any]:
    await _require_device(client)
    return {"success": await client.start_rainbow()}


@router.post("/off")
async def turn_off(
    caller: Caller = Depends(get_current_caller),
    client: LightClient = Depends(get_light_client)
) -> Dict[str, Any]:
    await _require_device(client)
    return {"success": await client.turn_off()}
