"""
Light Command Producer

One operation per light command. Each call validates its parameters,
stamps the caller and creation time, and writes exactly one envelope to
the selected queue. Nothing is retried here; a failed write raises and
the caller decides whether to resubmit.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Union

from ..commands.models import (
    CommandKind,
    CommandStatus,
    DeliveryPath,
    build_envelope,
    utcnow,
)
from ..core.errors import AuthError, CommandValidationError, StoreError
from ..core.security import Caller
from .command_queue import CommandQueue

logger = logging.getLogger(__name__)


def parse_path(path: Union[DeliveryPath, str]) -> DeliveryPath:
    try:
        return DeliveryPath(path)
    except ValueError:
        raise CommandValidationError(f"Unknown delivery path '{path}'", field="path") from None


class LightCommandProducer:
    """Builds light command envelopes and writes them to a command queue"""

    def __init__(
        self,
        buffered: CommandQueue,
        realtime: Optional[CommandQueue] = None,
        default_path: Union[DeliveryPath, str] = DeliveryPath.BUFFERED
    ):
        """
        Args:
            buffered: Document-store queue (polled, tracks status)
            realtime: Low-latency queue (pushed, no status); optional
            default_path: Path used when a call does not choose one
        """
        self.buffered = buffered
        self.realtime = realtime
        self.default_path = parse_path(default_path)
        self._last_timestamp: Optional[datetime] = None

    def _next_timestamp(self) -> datetime:
        """Creation time at millisecond resolution, strictly increasing per producer"""
        now = utcnow()
        now = now.replace(microsecond=now.microsecond // 1000 * 1000)
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(milliseconds=1)
        self._last_timestamp = now
        return now

    def queue_for(self, path: Optional[Union[DeliveryPath, str]] = None) -> CommandQueue:
        """Resolve a delivery path to its queue"""
        path = parse_path(path) if path is not None else self.default_path
        if path == DeliveryPath.LOW_LATENCY:
            if self.realtime is None:
                raise StoreError("Low-latency command store is not configured")
            return self.realtime
        return self.buffered

    async def add_command(
        self,
        caller: Optional[Caller],
        command: Union[CommandKind, str],
        parameters: Optional[Dict[str, Any]] = None,
        device_id: Optional[str] = None,
        path: Optional[Union[DeliveryPath, str]] = None
    ) -> str:
        """
        Validate and enqueue a single command.

        Returns:
            Id assigned to the new envelope

        Raises:
            AuthError: no authenticated caller (nothing written)
            CommandValidationError: bad parameters (nothing written)
            StoreError: the write failed or timed out
        """
        if caller is None or not caller.uid:
            raise AuthError("User must be authenticated")

        delivery = parse_path(path) if path is not None else self.default_path
        queue = self.queue_for(delivery)

        envelope = build_envelope(
            command,
            parameters,
            created_by=caller.uid,
            device_id=device_id,
            timestamp=self._next_timestamp(),
            # Low-latency entries carry no status; deletion is their only signal
            status=CommandStatus.PENDING if delivery == DeliveryPath.BUFFERED else None,
        )

        try:
            command_id = await queue.enqueue(envelope)
        except StoreError as e:
            logger.error(f"Error adding {envelope.command.value} command via {delivery.value} path: {e}")
            raise

        logger.info(
            f"Command queued: {envelope.command.value} ({command_id}) "
            f"by {caller.uid} via {delivery.value}"
        )
        return command_id

    async def send_theme(
        self,
        caller: Optional[Caller],
        theme: str,
        brightness: int,
        permanent: bool = False,
        device_id: Optional[str] = None,
        path: Optional[Union[DeliveryPath, str]] = None
    ) -> str:
        """
        Args:
            theme: 'boy', 'girl', 'neutral' or 'rainbow'
            brightness: 0-255
            permanent: If True, the executor does not auto-return to rainbow
        """
        return await self.add_command(
            caller,
            CommandKind.SET_THEME,
            {"theme": theme, "brightness": brightness, "permanent": permanent},
            device_id=device_id,
            path=path,
        )

    async def send_color(
        self,
        caller: Optional[Caller],
        red: int,
        green: int,
        blue: int,
        brightness: int,
        device_id: Optional[str] = None,
        path: Optional[Union[DeliveryPath, str]] = None
    ) -> str:
        return await self.add_command(
            caller,
            CommandKind.SET_COLOR,
            {"red": red, "green": green, "blue": blue, "brightness": brightness},
            device_id=device_id,
            path=path,
        )

    async def send_effect(
        self,
        caller: Optional[Caller],
        effect: str,
        speed: int,
        brightness: int,
        duration: Optional[int] = None,
        device_id: Optional[str] = None,
        path: Optional[Union[DeliveryPath, str]] = None
    ) -> str:
        """
        Args:
            effect: Effect name known to the executor ('rainbow', 'sparkle', 'comet', ...)
            speed: 1-100
            brightness: 0-255
            duration: Optional run time in milliseconds for running effects
        """
        parameters: Dict[str, Any] = {"effect": effect, "speed": speed, "brightness": brightness}
        if duration is not None:
            parameters["duration"] = duration
        return await self.add_command(
            caller, CommandKind.RUN_EFFECT, parameters, device_id=device_id, path=path
        )

    async def send_blinking(
        self,
        caller: Optional[Caller],
        duration: int,
        brightness: int,
        device_id: Optional[str] = None,
        path: Optional[Union[DeliveryPath, str]] = None
    ) -> str:
        return await self.add_command(
            caller,
            CommandKind.SET_BLINKING,
            {"duration": duration, "brightness": brightness},
            device_id=device_id,
            path=path,
        )

    async def send_turn_off(
        self,
        caller: Optional[Caller],
        device_id: Optional[str] = None,
        path: Optional[Union[DeliveryPath, str]] = None
    ) -> str:
        return await self.add_command(
            caller, CommandKind.TURN_OFF, {}, device_id=device_id, path=path
        )
