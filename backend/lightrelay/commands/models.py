"""
Command Envelope Models

Closed set of light commands, the parameter schema each one requires,
and the envelope written to either command queue.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Tuple, Type

import pydantic
from pydantic import BaseModel, ConfigDict, Field, StrictBool

from ..core.errors import CommandValidationError


class CommandKind(str, Enum):
    """Commands understood by the light executor"""
    SET_THEME = "set_theme"
    SET_COLOR = "set_color"
    SET_BLINKING = "set_blinking"
    RUN_EFFECT = "run_effect"
    TURN_OFF = "turn_off"


class CommandStatus(str, Enum):
    """Buffered queue status (forward only, see commands.state)"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class DeliveryPath(str, Enum):
    """Which queue a producer writes to"""
    BUFFERED = "buffered"
    LOW_LATENCY = "low_latency"


THEMES = ("boy", "girl", "neutral", "rainbow")

# Strict ints: booleans and numeric strings are rejected, not coerced
Channel = Annotated[int, Field(strict=True, ge=0, le=255)]
Speed = Annotated[int, Field(strict=True, ge=1, le=100)]
Milliseconds = Annotated[int, Field(strict=True, ge=0)]


# ============================================================================
# Parameter schemas
# ============================================================================

class _Parameters(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ThemeParameters(_Parameters):
    theme: Literal["boy", "girl", "neutral", "rainbow"]
    brightness: Channel
    # Executor keeps the theme instead of reverting to rainbow after its timeout
    permanent: StrictBool = False


class ColorParameters(_Parameters):
    red: Channel
    green: Channel
    blue: Channel
    brightness: Channel


class EffectParameters(_Parameters):
    effect: Annotated[str, Field(strict=True, min_length=1)]
    speed: Speed
    brightness: Channel
    duration: Optional[Milliseconds] = None


class BlinkingParameters(_Parameters):
    duration: Milliseconds
    brightness: Channel


class TurnOffParameters(_Parameters):
    pass


PARAMETER_SCHEMAS: Dict[CommandKind, Type[_Parameters]] = {
    CommandKind.SET_THEME: ThemeParameters,
    CommandKind.SET_COLOR: ColorParameters,
    CommandKind.RUN_EFFECT: EffectParameters,
    CommandKind.SET_BLINKING: BlinkingParameters,
    CommandKind.TURN_OFF: TurnOffParameters,
}


def validate_parameters(command: Any, parameters: Optional[Dict[str, Any]]) -> Tuple[CommandKind, Dict[str, Any]]:
    """
    Check parameters against the schema for their command kind.

    Args:
        command: CommandKind or its string value
        parameters: Raw parameter mapping (None means no parameters)

    Returns:
        (kind, normalized parameters) with defaults filled in and unset
        optional fields dropped

    Raises:
        CommandValidationError: naming the first violated constraint
    """
    try:
        kind = CommandKind(command)
    except (ValueError, TypeError):
        raise CommandValidationError(f"Unknown command '{command}'", field="command") from None

    if parameters is None:
        parameters = {}
    if not isinstance(parameters, dict):
        raise CommandValidationError("parameters must be a mapping", field="parameters")

    try:
        validated = PARAMETER_SCHEMAS[kind].model_validate(parameters)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "parameters"
        raise CommandValidationError(f"{kind.value}: {field}: {first['msg']}", field=field) from None

    return kind, validated.model_dump(exclude_none=True)


# ============================================================================
# Timestamps
# ============================================================================

def utcnow() -> datetime:
    """Naive UTC now, the representation stored in the buffered queue"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_epoch_ms(value: datetime) -> int:
    return int(value.replace(tzinfo=timezone.utc).timestamp() * 1000)


def from_epoch_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)


# ============================================================================
# Envelope
# ============================================================================

class CommandEnvelope(BaseModel):
    """A queued command plus its metadata"""
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    command: CommandKind
    parameters: Dict[str, Any] = Field(default_factory=dict)
    status: Optional[CommandStatus] = None
    timestamp: datetime
    device_id: Optional[str] = Field(default=None, alias="deviceId")
    created_by: Optional[str] = Field(default=None, alias="createdBy")
    processed_at: Optional[datetime] = Field(default=None, alias="processedAt")
    error_message: Optional[str] = Field(default=None, alias="errorMessage")

    def to_realtime_payload(self) -> Dict[str, Any]:
        """Value stored under the command key on the low-latency path"""
        payload: Dict[str, Any] = {
            "command": self.command.value,
            "parameters": self.parameters,
            "timestamp": to_epoch_ms(self.timestamp),
            "createdBy": self.created_by,
        }
        if self.device_id is not None:
            payload["deviceId"] = self.device_id
        if self.status is not None:
            payload["status"] = self.status.value
        return payload

    @classmethod
    def from_realtime(cls, key: str, data: Dict[str, Any]) -> "CommandEnvelope":
        """Parse a low-latency entry; entries without a timestamp sort first"""
        raw_timestamp = data.get("timestamp")
        timestamp = from_epoch_ms(raw_timestamp) if isinstance(raw_timestamp, (int, float)) else from_epoch_ms(0)
        return cls(
            id=key,
            command=data["command"],
            parameters=data.get("parameters") or {},
            status=data.get("status"),
            timestamp=timestamp,
            device_id=data.get("deviceId"),
            created_by=data.get("createdBy"),
        )


def build_envelope(
    command: Any,
    parameters: Optional[Dict[str, Any]],
    created_by: str,
    device_id: Optional[str] = None,
    status: Optional[CommandStatus] = CommandStatus.PENDING,
    timestamp: Optional[datetime] = None
) -> CommandEnvelope:
    """
    Validate a command and wrap it in an envelope ready to persist.

    The id is left empty; the queue assigns it on write.
    """
    kind, normalized = validate_parameters(command, parameters)
    return CommandEnvelope(
        command=kind,
        parameters=normalized,
        status=status,
        timestamp=timestamp or utcnow(),
        device_id=device_id,
        created_by=created_by,
    )
