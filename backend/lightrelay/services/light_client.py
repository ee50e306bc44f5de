"""
Direct Light Client

Drives the RGB light fixture over its LAN HTTP API, bypassing the command
queues. Used for quick manual control when the host is on the same network
as the fixture. The fixture address lives in application settings so every
producer process shares it.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from ..core.errors import CommandValidationError
from .settings_service import SettingsService

logger = logging.getLogger(__name__)

# Preset colors for the reveal
PRESET_COLORS: Dict[str, Dict[str, int]] = {
    "pink": {"r": 255, "g": 105, "b": 180},  # Hot pink for girl
    "blue": {"r": 0, "g": 191, "b": 255},    # Deep sky blue for boy
    "off": {"r": 0, "g": 0, "b": 0},
}


class LightClient:
    """HTTP client for the light fixture firmware"""

    def __init__(
        self,
        settings_service: SettingsService,
        port: int = 80,
        timeout: float = 5.0,
        test_timeout: float = 3.0
    ):
        self.settings_service = settings_service
        self.port = port
        self.timeout = timeout
        self.test_timeout = test_timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def get_device_ip(self) -> Optional[str]:
        """Configured fixture address; the settings lookup runs on the default executor"""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.settings_service.get_device_ip)

    async def is_configured(self) -> bool:
        return await self.get_device_ip() is not None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def _post(self, endpoint: str, body: Dict[str, Any]) -> Optional[aiohttp.ClientResponse]:
        """POST JSON to the fixture; returns None when no device is configured or on network error"""
        ip = await self.get_device_ip()
        if ip is None:
            logger.warning("No ESP32 device configured")
            return None

        url = f"http://{ip}:{self.port}{endpoint}"
        session = await self._get_session()
        try:
            async with session.post(
                url,
                json=body,
                headers={"Connection": "close"},
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                await response.read()
                logger.debug(f"ESP32 {endpoint} response status: {response.status}")
                return response
        except asyncio.TimeoutError:
            logger.error(f"ESP32 {endpoint} request timed out")
        except aiohttp.ClientError as e:
            logger.error(f"Error sending {endpoint} to ESP32: {e}")
        return None

    async def set_rgb(self, red: int, green: int, blue: int) -> bool:
        """Send an RGB color; True if the fixture accepted it"""
        for name, value in (("red", red), ("green", green), ("blue", blue)):
            if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 255:
                raise CommandValidationError(f"{name} must be an integer between 0 and 255", field=name)

        response = await self._post("/color", {"r": red, "g": green, "b": blue})
        if response is None:
            return False
        if response.status == 200:
            logger.info(f"ESP32 color updated: R={red} G={green} B={blue}")
            return True
        logger.warning(f"ESP32 responded with error: {response.status}")
        return False

    async def send_preset_color(self, color_name: str) -> bool:
        color = PRESET_COLORS.get(color_name)
        if color is None:
            raise CommandValidationError(f"Invalid color preset: {color_name}", field="color")
        return await self.set_rgb(color["r"], color["g"], color["b"])

    async def send_girl_color(self) -> bool:
        return await self.send_preset_color("pink")

    async def send_boy_color(self) -> bool:
        return await self.send_preset_color("blue")

    async def turn_off(self) -> bool:
        return await self.send_preset_color("off")

    async def send_theme(self, theme_data: Dict[str, Any]) -> bool:
        """Start a theme animation (colors array plus timing) on the fixture"""
        response = await self._post("/theme", theme_data)
        if response is None:
            return False
        if response.status == 200:
            logger.info("ESP32 theme animation started")
            return True
        logger.warning(f"ESP32 theme responded with error: {response.status}")
        return False

    async def start_rainbow(self) -> bool:
        response = await self._post("/rainbow", {})
        if response is None:
            return False
        if response.status == 200:
            logger.info("ESP32 rainbow effect started")
            return True
        logger.warning(f"ESP32 rainbow responded with error: {response.status}")
        return False

    async def test_connection(self) -> bool:
        """Check the fixture answers on its root endpoint"""
        ip = await self.get_device_ip()
        if ip is None:
            return False

        session = await self._get_session()
        try:
            async with session.get(
                f"http://{ip}:{self.port}/",
                timeout=aiohttp.ClientTimeout(total=self.test_timeout)
            ) as response:
                return response.status == 200
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            logger.warning(f"ESP32 connection test failed: {e}")
            return False
