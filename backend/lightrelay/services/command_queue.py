"""
Command Queue Service

One interface over the two light command queues:

- DocumentCommandQueue: buffered path. SQL table polled by the executor,
  explicit pending/processing/completed/failed status.
- RealtimeCommandQueue: low-latency path. Flat key/value tree behind a
  REST API that pushes to the executor; no status, the executor deletes
  entries once handled.

There is no ordering between the two queues.
"""

import asyncio
import json
import logging
import re
import secrets
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import aiohttp
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..commands.models import (
    CommandEnvelope,
    CommandStatus,
    to_epoch_ms,
    utcnow,
)
from ..commands.state import TERMINAL_STATUSES, advance_status, parse_status
from ..core.errors import CommandNotFoundError, PartialCleanupFailure, StoreError
from ..db.database import SessionLocal
from ..models.command_queue import LightCommand

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    """Outcome of one sweep of one queue"""
    store: str
    deleted: int = 0
    failed: int = 0  # eligible entries left behind for the next sweep
    complete: bool = True
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CommandQueue(ABC):
    """
    Shared, multi-writer, multi-reader command queue.

    No deduplication: every enqueue creates a new envelope, even for an
    identical command sent twice.
    """

    name = "queue"

    @abstractmethod
    async def enqueue(self, envelope: CommandEnvelope) -> str:
        """Persist an envelope and return its id"""

    @abstractmethod
    async def get(self, command_id: str) -> Optional[CommandEnvelope]:
        """Fetch one envelope, None if it does not exist"""

    @abstractmethod
    async def list_pending(self, device_id: Optional[str] = None) -> List[CommandEnvelope]:
        """Unclaimed envelopes, oldest first"""

    @abstractmethod
    async def resolve(
        self,
        command_id: str,
        status: CommandStatus,
        error_message: Optional[str] = None
    ) -> Optional[CommandEnvelope]:
        """Move an envelope forward in its lifecycle"""

    @abstractmethod
    async def delete(self, command_id: str) -> bool:
        """Delete an envelope; False (not an error) if it was already gone"""

    @abstractmethod
    async def sweep(self, max_age: timedelta, now: Optional[datetime] = None) -> int:
        """
        Delete entries that are no longer actionable.

        Returns:
            Number of entries deleted

        Raises:
            StoreError: the queue could not be read at all
            PartialCleanupFailure: the sweep stopped partway
        """

    async def close(self):
        """Release network resources"""


# ============================================================================
# Buffered path
# ============================================================================

class DocumentCommandQueue(CommandQueue):
    """
    Buffered queue backed by the `esp32_commands` SQL table.

    SQLAlchemy sessions are blocking, so every operation runs on the
    loop's default executor with its own session.
    """

    name = "buffered"

    def __init__(self, session_factory: sessionmaker = SessionLocal, timeout: float = 5.0):
        self.session_factory = session_factory
        self.timeout = timeout

    async def _run(self, operation: Callable[..., Any], *args) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, partial(self._with_session, operation, *args)),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise StoreError(f"Buffered store timed out after {self.timeout}s") from None
        except SQLAlchemyError as e:
            raise StoreError(f"Buffered store error: {e}") from e

    def _with_session(self, operation: Callable[..., Any], *args) -> Any:
        db = self.session_factory()
        try:
            return operation(db, *args)
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _to_envelope(row: LightCommand) -> CommandEnvelope:
        return CommandEnvelope(
            id=row.command_id,
            command=row.command,
            parameters=row.parameters or {},
            status=row.status,
            timestamp=row.timestamp,
            device_id=row.device_id,
            created_by=row.created_by,
            processed_at=row.processed_at,
            error_message=row.error_message,
        )

    # ---- blocking operations (run in executor) ----

    def _insert(self, db: Session, envelope: CommandEnvelope) -> str:
        command_id = uuid.uuid4().hex
        row = LightCommand(
            command_id=command_id,
            command=envelope.command.value,
            parameters=envelope.parameters,
            status=(envelope.status or CommandStatus.PENDING).value,
            timestamp=envelope.timestamp,
            device_id=envelope.device_id,
            created_by=envelope.created_by,
        )
        db.add(row)
        db.commit()
        return command_id

    def _fetch(self, db: Session, command_id: str) -> Optional[CommandEnvelope]:
        row = db.query(LightCommand).filter(LightCommand.command_id == command_id).first()
        return self._to_envelope(row) if row else None

    def _list(self, db: Session, statuses: Tuple[str, ...], device_id: Optional[str]) -> List[CommandEnvelope]:
        query = db.query(LightCommand).filter(LightCommand.status.in_(statuses))
        if device_id is not None:
            query = query.filter(
                (LightCommand.device_id == device_id) | (LightCommand.device_id.is_(None))
            )
        rows = query.order_by(LightCommand.timestamp.asc(), LightCommand.id.asc()).all()
        return [self._to_envelope(row) for row in rows]

    def _update_status(
        self,
        db: Session,
        command_id: str,
        status: CommandStatus,
        error_message: Optional[str]
    ) -> CommandEnvelope:
        row = db.query(LightCommand).filter(LightCommand.command_id == command_id).first()
        if not row:
            raise CommandNotFoundError(command_id)

        # Only status, processed_at and error_message change
        row.status = advance_status(row.status, status).value
        row.processed_at = utcnow()
        if error_message is not None:
            row.error_message = error_message
        db.commit()
        return self._to_envelope(row)

    def _remove(self, db: Session, command_id: str) -> bool:
        deleted = db.query(LightCommand).filter(LightCommand.command_id == command_id).delete()
        db.commit()
        return deleted > 0

    def _remove_resolved_before(self, db: Session, cutoff: datetime) -> int:
        deleted = db.query(LightCommand).filter(
            LightCommand.status.in_([s.value for s in TERMINAL_STATUSES]),
            LightCommand.timestamp < cutoff
        ).delete(synchronize_session=False)
        db.commit()
        return deleted

    # ---- CommandQueue ----

    async def enqueue(self, envelope: CommandEnvelope) -> str:
        command_id = await self._run(self._insert, envelope)
        logger.info(f"Buffered command added: {envelope.command.value} ({command_id})")
        return command_id

    async def get(self, command_id: str) -> Optional[CommandEnvelope]:
        return await self._run(self._fetch, command_id)

    async def list_pending(self, device_id: Optional[str] = None) -> List[CommandEnvelope]:
        return await self._run(self._list, (CommandStatus.PENDING.value,), device_id)

    async def list_by_status(
        self,
        statuses: Iterable[CommandStatus],
        device_id: Optional[str] = None
    ) -> List[CommandEnvelope]:
        values = tuple(parse_status(s).value for s in statuses)
        return await self._run(self._list, values, device_id)

    async def resolve(
        self,
        command_id: str,
        status: CommandStatus,
        error_message: Optional[str] = None
    ) -> Optional[CommandEnvelope]:
        envelope = await self._run(self._update_status, command_id, parse_status(status), error_message)
        logger.info(f"Command status updated: {command_id} -> {envelope.status.value}")
        return envelope

    async def delete(self, command_id: str) -> bool:
        return await self._run(self._remove, command_id)

    async def delete_resolved_before(self, cutoff: datetime) -> int:
        """Delete completed/failed envelopes created before cutoff"""
        return await self._run(self._remove_resolved_before, cutoff)

    async def sweep(self, max_age: timedelta, now: Optional[datetime] = None) -> int:
        return await self.delete_resolved_before((now or utcnow()) - max_age)


# ============================================================================
# Low-latency path
# ============================================================================

_key_lock = threading.Lock()
_last_key_ms = 0


def generate_command_key(caller_id: Optional[str] = None) -> str:
    """
    Producer-side key for the low-latency queue.

    Format: "-" + caller prefix (up to 6 alphanumerics, "Web" when unknown)
    + 13-digit millisecond timestamp (strictly increasing within the process)
    + 6-digit random suffix.
    """
    global _last_key_ms

    prefix = re.sub(r"[^A-Za-z0-9]", "", caller_id or "")[:6] or "Web"
    with _key_lock:
        now_ms = max(int(time.time() * 1000), _last_key_ms + 1)
        _last_key_ms = now_ms
    return f"-{prefix}{now_ms:013d}{secrets.randbelow(1_000_000):06d}"


class RealtimeCommandQueue(CommandQueue):
    """
    Low-latency queue on a realtime database REST API.

    Layout: <base_url>/<root_path>/<key>.json, one entry per command,
    value {command, parameters, timestamp, createdBy}. Only keys starting
    with "-" are commands.
    """

    name = "realtime"

    # Re-reads allowed when an entry changes between read and conditional write
    CONDITIONAL_WRITE_ATTEMPTS = 3

    def __init__(
        self,
        base_url: str,
        auth_token: Optional[str] = None,
        root_path: str = "esp32_commands",
        timeout: float = 5.0,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.auth_token = auth_token
        self.root_path = root_path.strip("/")
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_settings(cls, settings) -> Optional["RealtimeCommandQueue"]:
        """Build from Settings, None when no realtime database is configured"""
        if not settings.REALTIME_DB_URL:
            return None
        return cls(
            base_url=settings.REALTIME_DB_URL,
            auth_token=settings.REALTIME_DB_AUTH,
            root_path=settings.REALTIME_COMMANDS_PATH,
            timeout=settings.STORE_TIMEOUT_SECONDS,
        )

    def _url(self, key: Optional[str] = None) -> str:
        path = f"{self.root_path}/{key}" if key else self.root_path
        return f"{self.base_url}/{path}.json"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _exchange(
        self,
        method: str,
        key: Optional[str] = None,
        payload: Any = None,
        headers: Optional[Dict[str, str]] = None
    ) -> Tuple[int, bytes, Optional[str]]:
        """One round trip; returns (HTTP status, raw body, ETag header)"""
        session = await self._get_session()
        params = {"auth": self.auth_token} if self.auth_token else None
        try:
            async with session.request(
                method,
                self._url(key),
                params=params,
                json=payload,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                body = await response.read()
                return response.status, body, response.headers.get("ETag")
        except asyncio.TimeoutError:
            raise StoreError(f"Realtime store {method} timed out after {self.timeout}s") from None
        except aiohttp.ClientError as e:
            raise StoreError(f"Realtime store {method} failed: {e}") from e

    @staticmethod
    def _http_error(status: int, body: bytes) -> StoreError:
        return StoreError(f"HTTP {status}: {body.decode('utf-8', errors='replace')}")

    @staticmethod
    def _decode(body: bytes) -> Any:
        if not body:
            return None
        try:
            return json.loads(body)
        except ValueError as e:
            snippet = body[:80].decode("utf-8", errors="replace")
            raise StoreError(f"Realtime store returned a non-JSON body: {snippet!r}") from e

    async def _request(self, method: str, key: Optional[str] = None, payload: Any = None) -> Any:
        status, body, _ = await self._exchange(method, key, payload)
        if status == 404 and method == "DELETE":
            return None
        if status not in (200, 201, 204):
            raise self._http_error(status, body)
        return self._decode(body)

    @staticmethod
    def _entries(data: Any) -> List[Tuple[str, Dict[str, Any]]]:
        if not isinstance(data, dict):
            return []
        return [
            (key, value) for key, value in data.items()
            if key.startswith("-") and isinstance(value, dict)
        ]

    async def enqueue(self, envelope: CommandEnvelope) -> str:
        key = generate_command_key(envelope.created_by)
        await self._request("PUT", key, envelope.to_realtime_payload())
        logger.info(f"Realtime command sent: {envelope.command.value} ({key})")
        return key

    async def get(self, command_id: str) -> Optional[CommandEnvelope]:
        data = await self._request("GET", command_id)
        if not isinstance(data, dict):
            return None
        return CommandEnvelope.from_realtime(command_id, data)

    async def list_pending(self, device_id: Optional[str] = None) -> List[CommandEnvelope]:
        data = await self._request("GET")
        pending = []
        for key, value in self._entries(data):
            try:
                envelope = CommandEnvelope.from_realtime(key, value)
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping malformed realtime command {key}: {e}")
                continue
            if envelope.status not in (None, CommandStatus.PENDING):
                continue
            if device_id is not None and envelope.device_id not in (None, device_id):
                continue
            pending.append(envelope)

        pending.sort(key=lambda e: (e.timestamp, e.id))
        return pending

    async def resolve(
        self,
        command_id: str,
        status: CommandStatus,
        error_message: Optional[str] = None
    ) -> Optional[CommandEnvelope]:
        """
        Terminal statuses delete the entry (the realtime queue keeps no
        history); `processing` is written to the entry's status field.

        The status write is conditional on the ETag of the entry as read,
        so an entry deleted by the executor in between is never recreated.
        """
        for _ in range(self.CONDITIONAL_WRITE_ATTEMPTS):
            http_status, body, etag = await self._exchange(
                "GET", command_id, headers={"X-Firebase-ETag": "true"}
            )
            if http_status != 200:
                raise self._http_error(http_status, body)
            data = self._decode(body)
            if not isinstance(data, dict):
                raise CommandNotFoundError(command_id)

            target = advance_status(data.get("status") or CommandStatus.PENDING, status)
            if target in TERMINAL_STATUSES:
                await self._request("DELETE", command_id)
                logger.info(f"Realtime command resolved and deleted: {command_id} ({target.value})")
                return None

            if not etag:
                raise StoreError("Realtime store did not return an ETag")

            data["status"] = target.value
            data["processedAt"] = to_epoch_ms(utcnow())
            if error_message is not None:
                data["errorMessage"] = error_message

            http_status, body, _ = await self._exchange("PUT", command_id, data, headers={"if-match": etag})
            if http_status == 412:
                logger.info(f"Realtime command {command_id} changed during status update, re-reading")
                continue
            if http_status not in (200, 201, 204):
                raise self._http_error(http_status, body)
            return CommandEnvelope.from_realtime(command_id, data)

        raise StoreError(f"Realtime command {command_id} kept changing during status update")

    async def delete(self, command_id: str) -> bool:
        existed = await self._request("GET", command_id) is not None
        await self._request("DELETE", command_id)
        return existed

    async def sweep(self, max_age: timedelta, now: Optional[datetime] = None) -> int:
        """
        Delete entries that are completed, stuck in processing, or older
        than max_age regardless of status.
        """
        now_ms = to_epoch_ms(now or utcnow())
        max_age_ms = max_age.total_seconds() * 1000

        data = await self._request("GET")
        stale = []
        for key, value in self._entries(data):
            status = value.get("status")
            timestamp = value.get("timestamp")
            expired = isinstance(timestamp, (int, float)) and (now_ms - timestamp) > max_age_ms
            if status in ("completed", "processing") or expired:
                stale.append((key, status))

        deleted = 0
        for key, status in stale:
            try:
                await self._request("DELETE", key)
            except StoreError as e:
                raise PartialCleanupFailure(
                    f"Realtime sweep stopped at {key}: {e.message}",
                    deleted=deleted,
                    remaining=len(stale) - deleted
                ) from e
            deleted += 1
            logger.debug(f"Deleted old realtime command: {key} (status: {status})")

        return deleted

    async def close(self):
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
