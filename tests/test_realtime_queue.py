import asyncio
import re
from datetime import timedelta

import pytest

from lightrelay.commands.models import CommandStatus, build_envelope, to_epoch_ms, utcnow
from lightrelay.core.errors import (
    CommandNotFoundError,
    IllegalTransitionError,
    PartialCleanupFailure,
    StoreError,
)
from lightrelay.services.command_queue import generate_command_key

from realtime_fake import FakeRealtimeDatabase, realtime_queue


def theme(created_by="guest-b", timestamp=None):
    return build_envelope(
        "set_theme",
        {"theme": "boy", "brightness": 200},
        created_by=created_by,
        status=None,
        timestamp=timestamp,
    )


def test_generate_command_key_format():
    key = generate_command_key("uid:guest-b.42")
    assert re.fullmatch(r"-uidgue\d{13}\d{6}", key)
    assert generate_command_key(None).startswith("-Web")


def test_generated_keys_are_unique_and_ordered():
    keys = [generate_command_key("host") for _ in range(2000)]
    assert len(set(keys)) == len(keys)
    timestamps = [int(k[len("-host"):-6]) for k in keys]
    assert timestamps == sorted(set(timestamps))


def test_enqueue_puts_payload_under_key():
    fake = FakeRealtimeDatabase()

    async def scenario():
        async with realtime_queue(fake) as queue:
            return await queue.enqueue(theme())

    key = asyncio.run(scenario())
    assert key.startswith("-guestb")
    assert fake.requests == [("PUT", f"/esp32_commands/{key}.json")]
    stored = fake.entries[key]
    assert stored["command"] == "set_theme"
    assert stored["parameters"] == {"theme": "boy", "brightness": 200, "permanent": False}
    assert stored["createdBy"] == "guest-b"
    assert isinstance(stored["timestamp"], int)
    assert "status" not in stored


def test_enqueue_surfaces_http_errors():
    fake = FakeRealtimeDatabase()
    fake.unavailable = True

    async def scenario():
        async with realtime_queue(fake) as queue:
            await queue.enqueue(theme())

    with pytest.raises(StoreError, match="503"):
        asyncio.run(scenario())
    assert fake.entries == {}


def test_enqueue_with_bad_credentials_fails():
    fake = FakeRealtimeDatabase(auth="db-secret")

    async def scenario():
        async with realtime_queue(fake, auth_token="wrong") as queue:
            await queue.enqueue(theme())

    with pytest.raises(StoreError, match="401"):
        asyncio.run(scenario())


def test_enqueue_times_out():
    fake = FakeRealtimeDatabase()
    fake.delay = 1.0

    async def scenario():
        async with realtime_queue(fake, timeout=0.1) as queue:
            await queue.enqueue(theme())

    with pytest.raises(StoreError, match="timed out"):
        asyncio.run(scenario())


def test_list_pending_sorted_and_filtered():
    fake = FakeRealtimeDatabase()
    now = utcnow()

    async def scenario():
        async with realtime_queue(fake) as queue:
            newer = await queue.enqueue(theme(timestamp=now))
            older = await queue.enqueue(theme(timestamp=now - timedelta(seconds=5)))
            claimed = await queue.enqueue(theme(timestamp=now - timedelta(seconds=9)))
            await queue.resolve(claimed, CommandStatus.PROCESSING)
            fake.entries["config"] = {"brightness": 10}
            fake.entries["-broken"] = {"parameters": {}}
            return [older, newer], [e.id for e in await queue.list_pending()]

    expected, actual = asyncio.run(scenario())
    assert actual == expected


def test_list_pending_empty_store():
    fake = FakeRealtimeDatabase()

    async def scenario():
        async with realtime_queue(fake) as queue:
            return await queue.list_pending()

    assert asyncio.run(scenario()) == []


def test_resolve_processing_then_completed_deletes():
    fake = FakeRealtimeDatabase()

    async def scenario():
        async with realtime_queue(fake) as queue:
            key = await queue.enqueue(theme())
            processing = await queue.resolve(key, CommandStatus.PROCESSING)
            status_after_patch = fake.entries[key]["status"]
            done = await queue.resolve(key, CommandStatus.COMPLETED)
            return key, processing, status_after_patch, done

    key, processing, status_after_patch, done = asyncio.run(scenario())
    assert processing.status == CommandStatus.PROCESSING
    assert status_after_patch == "processing"
    assert done is None
    assert key not in fake.entries


def test_resolve_rejects_regression_and_unknown():
    fake = FakeRealtimeDatabase()

    async def scenario():
        async with realtime_queue(fake) as queue:
            key = await queue.enqueue(theme())
            await queue.resolve(key, CommandStatus.PROCESSING)
            with pytest.raises(IllegalTransitionError):
                await queue.resolve(key, CommandStatus.PENDING)
            with pytest.raises(CommandNotFoundError):
                await queue.resolve("-missing", CommandStatus.COMPLETED)

    asyncio.run(scenario())


def test_delete_missing_key_is_noop():
    fake = FakeRealtimeDatabase()

    async def scenario():
        async with realtime_queue(fake) as queue:
            key = await queue.enqueue(theme())
            return await queue.delete(key), await queue.delete(key)

    assert asyncio.run(scenario()) == (True, False)


def test_sweep_policy():
    fake = FakeRealtimeDatabase()
    now = utcnow()
    now_ms = to_epoch_ms(now)
    fake.entries = {
        "-completed": {"command": "turn_off", "parameters": {}, "timestamp": now_ms, "status": "completed"},
        "-processing": {"command": "turn_off", "parameters": {}, "timestamp": now_ms, "status": "processing"},
        "-stale": {"command": "turn_off", "parameters": {}, "timestamp": now_ms - 61_000},
        "-stale_failed": {"command": "turn_off", "parameters": {}, "timestamp": now_ms - 120_000, "status": "failed"},
        "-fresh": {"command": "turn_off", "parameters": {}, "timestamp": now_ms - 30_000},
        "settings": {"timestamp": 0, "status": "completed"},
    }

    async def scenario():
        async with realtime_queue(fake) as queue:
            return await queue.sweep(timedelta(seconds=60), now=now)

    deleted = asyncio.run(scenario())
    assert deleted == 4
    assert set(fake.entries) == {"-fresh", "settings"}


def test_sweep_partial_failure_reports_progress():
    fake = FakeRealtimeDatabase()
    old_ms = to_epoch_ms(utcnow()) - 600_000
    fake.entries = {
        f"-old{i}": {"command": "turn_off", "parameters": {}, "timestamp": old_ms}
        for i in range(4)
    }
    fake.fail_deletes_after = 2

    async def scenario():
        async with realtime_queue(fake) as queue:
            await queue.sweep(timedelta(seconds=60))

    with pytest.raises(PartialCleanupFailure) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.deleted == 2
    assert exc_info.value.remaining == 2
    assert len(fake.entries) == 2


def test_resolve_does_not_recreate_deleted_entry():
    fake = FakeRealtimeDatabase()

    async def scenario():
        async with realtime_queue(fake) as queue:
            key = await queue.enqueue(theme())
            # Executor finishes and deletes the entry while the update is in flight
            fake.before_conditional_write = lambda k: fake.entries.pop(k, None)
            with pytest.raises(CommandNotFoundError):
                await queue.resolve(key, CommandStatus.PROCESSING)
            return key

    key = asyncio.run(scenario())
    assert key not in fake.entries
    assert fake.entries == {}


def test_resolve_rereads_after_concurrent_change():
    fake = FakeRealtimeDatabase()
    changed = []

    def retarget(key):
        if not changed:
            fake.entries[key]["deviceId"] = "esp-1"
            changed.append(key)

    async def scenario():
        async with realtime_queue(fake) as queue:
            key = await queue.enqueue(theme())
            fake.before_conditional_write = retarget
            return key, await queue.resolve(key, CommandStatus.PROCESSING)

    key, envelope = asyncio.run(scenario())
    assert envelope.status == CommandStatus.PROCESSING
    assert envelope.device_id == "esp-1"
    assert fake.entries[key]["status"] == "processing"
    assert fake.entries[key]["deviceId"] == "esp-1"
    assert fake.entries[key]["command"] == "set_theme"
    assert fake.count("PUT") == 3


def test_non_json_body_becomes_store_error():
    fake = FakeRealtimeDatabase()
    fake.raw_body = "<html>proxy</html>"

    async def scenario():
        async with realtime_queue(fake) as queue:
            await queue.list_pending()

    with pytest.raises(StoreError, match="non-JSON"):
        asyncio.run(scenario())
