"""
Light Command Routes

Producer endpoints (one per command), executor-facing status updates,
and on-demand cleanup. Every route requires an authenticated caller.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List, Dict, Any, Optional
from pydantic import BaseModel, StrictBool, StrictInt, StrictStr

from ..commands.models import CommandEnvelope, CommandStatus, DeliveryPath
from ..core.security import Caller, get_current_caller
from ..services.command_producer import LightCommandProducer
from ..services.queue_janitor import QueueJanitor
from .dependencies import get_janitor, get_producer

router = APIRouter(prefix="/commands", tags=["commands"])


# ============================================================================
# Pydantic Models
# ============================================================================

class ThemeRequest(BaseModel):
    theme: StrictStr
    brightness: StrictInt
    permanent: StrictBool = False
    device_id: Optional[str] = None


class ColorRequest(BaseModel):
    red: StrictInt
    green: StrictInt
    blue: StrictInt
    brightness: StrictInt
    device_id: Optional[str] = None


class EffectRequest(BaseModel):
    effect: StrictStr
    speed: StrictInt
    brightness: StrictInt
    duration: Optional[StrictInt] = None  # milliseconds
    device_id: Optional[str] = None


class BlinkingRequest(BaseModel):
    duration: StrictInt  # milliseconds
    brightness: StrictInt
    device_id: Optional[str] = None


class TurnOffRequest(BaseModel):
    device_id: Optional[str] = None


class GenericCommandRequest(BaseModel):
    command: str
    parameters: Dict[str, Any] = {}
    device_id: Optional[str] = None


class CommandAccepted(BaseModel):
    command_id: str
    command: str
    path: DeliveryPath


class StatusUpdateRequest(BaseModel):
    status: CommandStatus
    error_message: Optional[str] = None


class StatusUpdateResponse(BaseModel):
    command_id: str
    status: CommandStatus
    deleted: bool  # Low-latency commands are deleted once resolved
    envelope: Optional[CommandEnvelope] = None


# ============================================================================
# Helper Functions
# ============================================================================

def _accepted(producer: LightCommandProducer, command_id: str, command: str,
              path: Optional[DeliveryPath]) -> CommandAccepted:
    return CommandAccepted(
        command_id=command_id,
        command=command,
        path=path or producer.default_path,
    )


# ============================================================================
# Producer endpoints
# ============================================================================

@router.post("/theme", status_code=201)
async def send_theme(
    request: ThemeRequest,
    path: Optional[DeliveryPath] = Query(None),
    caller: Caller = Depends(get_current_caller),
    producer: LightCommandProducer = Depends(get_producer)
) -> CommandAccepted:
    command_id = await producer.send_theme(
        caller, request.theme, request.brightness,
        permanent=request.permanent, device_id=request.device_id, path=path
    )
    return _accepted(producer, command_id, "set_theme", path)


@router.post("/color", status_code=201)
async def send_color(
    request: ColorRequest,
    path: Optional[DeliveryPath] = Query(None),
    caller: Caller = Depends(get_current_caller),
    producer: LightCommandProducer = Depends(get_producer)
) -> CommandAccepted:
    command_id = await producer.send_color(
        caller, request.red, request.green, request.blue, request.brightness,
        device_id=request.device_id, path=path
    )
    return _accepted(producer, command_id, "set_color", path)


@router.post("/effect", status_code=201)
async def send_effect(
    request: EffectRequest,
    path: Optional[DeliveryPath] = Query(None),
    caller: Caller = Depends(get_current_caller),
    producer: LightCommandProducer = Depends(get_producer)
) -> CommandAccepted:
    command_id = await producer.send_effect(
        caller, request.effect, request.speed, request.brightness,
        duration=request.duration, device_id=request.device_id, path=path
    )
    return _accepted(producer, command_id, "run_effect", path)


@router.post("/blinking", status_code=201)
async def send_blinking(
    request: BlinkingRequest,
    path: Optional[DeliveryPath] = Query(None),
    caller: Caller = Depends(get_current_caller),
    producer: LightCommandProducer = Depends(get_producer)
) -> CommandAccepted:
    command_id = await producer.send_blinking(
        caller, request.duration, request.brightness,
        device_id=request.device_id, path=path
    )
    return _accepted(producer, command_id, "set_blinking", path)


@router.post("/turn-off", status_code=201)
async def send_turn_off(
    request: Optional[TurnOffRequest] = None,
    path: Optional[DeliveryPath] = Query(None),
    caller: Caller = Depends(get_current_caller),
    producer: LightCommandProducer = Depends(get_producer)
) -> CommandAccepted:
    device_id = request.device_id if request else None
    command_id = await producer.send_turn_off(caller, device_id=device_id, path=path)
    return _accepted(producer, command_id, "turn_off", path)


@router.post("", status_code=201)
async def add_command(
    request: GenericCommandRequest,
    path: Optional[DeliveryPath] = Query(None),
    caller: Caller = Depends(get_current_caller),
    producer: LightCommandProducer = Depends(get_producer)
) -> CommandAccepted:
    """Queue any supported command with a raw parameter mapping"""
    command_id = await producer.add_command(
        caller, request.command, request.parameters,
        device_id=request.device_id, path=path
    )
    return _accepted(producer, command_id, request.command, path)


# ============================================================================
# Queue inspection / executor endpoints
# ============================================================================

@router.get("/pending", response_model=List[CommandEnvelope])
async def list_pending(
    path: Optional[DeliveryPath] = Query(None),
    device_id: Optional[str] = Query(None),
    caller: Caller = Depends(get_current_caller),
    producer: LightCommandProducer = Depends(get_producer)
):
    """Pending commands, oldest first"""
    return await producer.queue_for(path).list_pending(device_id=device_id)


@router.get("/{command_id}", response_model=CommandEnvelope)
async def get_command(
    command_id: str,
    path: Optional[DeliveryPath] = Query(None),
    caller: Caller = Depends(get_current_caller),
    producer: LightCommandProducer = Depends(get_producer)
):
    envelope = await producer.queue_for(path).get(command_id)
    if envelope is None:
        raise HTTPException(status_code=404, detail=f"Command {command_id} not found")
    return envelope


@router.patch("/{command_id}/status")
async def update_command_status(
    command_id: str,
    request: StatusUpdateRequest,
    path: Optional[DeliveryPath] = Query(None),
    caller: Caller = Depends(get_current_caller),
    producer: LightCommandProducer = Depends(get_producer)
) -> StatusUpdateResponse:
    """Executor reports progress; status only moves forward"""
    envelope = await producer.queue_for(path).resolve(
        command_id, request.status, error_message=request.error_message
    )
    return StatusUpdateResponse(
        command_id=command_id,
        status=request.status,
        deleted=envelope is None,
        envelope=envelope,
    )


@router.delete("/{command_id}")
async def delete_command(
    command_id: str,
    path: Optional[DeliveryPath] = Query(None),
    caller: Caller = Depends(get_current_caller),
    producer: LightCommandProducer = Depends(get_producer)
) -> Dict[str, Any]:
    """Delete a command; deleting an unknown id is not an error"""
    deleted = await producer.queue_for(path).delete(command_id)
    return {"command_id": command_id, "deleted": deleted}


# ============================================================================
# Cleanup
# ============================================================================

@router.post("/cleanup")
async def cleanup_old_commands(
    older_than_hours: float = Query(24, ge=0),
    caller: Caller = Depends(get_current_caller),
    janitor: QueueJanitor = Depends(get_janitor)
) -> Dict[str, Any]:
    report = await janitor.cleanup_old_commands(older_than_hours=older_than_hours)
    return report.to_dict()


@router.post("/cleanup/realtime")
async def cleanup_realtime_commands(
    max_age_seconds: Optional[float] = Query(None, ge=0),
    caller: Caller = Depends(get_current_caller),
    janitor: QueueJanitor = Depends(get_janitor)
) -> Dict[str, Any]:
    report = await janitor.cleanup_realtime_commands(max_age_seconds=max_age_seconds)
    return report.to_dict()
