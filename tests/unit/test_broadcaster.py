"""Unit tests for the realtime event broadcaster."""
from unittest.mock import AsyncMock, Mock

import pytest

from unmute.services.realtime.broadcaster import EventBroadcaster


def fake_websocket(fail=False):
    websocket = Mock()
    websocket.accept = AsyncMock()
    websocket.send_json = AsyncMock(side_effect=RuntimeError("connection closed") if fail else None)
    return websocket


class TestEventBroadcaster:
    """Test fan-out to browser clients."""

    @pytest.mark.asyncio
    async def test_publish_to_all_clients(self):
        broadcaster = EventBroadcaster()
        first, second = fake_websocket(), fake_websocket()
        await broadcaster.connect(first)
        await broadcaster.connect(second)

        await broadcaster.publish("transcription", {"callSid": "CA1", "text": "Hello."})

        expected = {"event": "transcription", "data": {"callSid": "CA1", "text": "Hello."}}
        first.send_json.assert_awaited_once_with(expected)
        second.send_json.assert_awaited_once_with(expected)
        first.accept.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failing_client_is_dropped(self):
        broadcaster = EventBroadcaster()
        healthy, broken = fake_websocket(), fake_websocket(fail=True)
        await broadcaster.connect(healthy)
        await broadcaster.connect(broken)

        await broadcaster.publish("call-status", {"callSid": "CA1", "status": "ended"})
        await broadcaster.publish("call-status", {"callSid": "CA2", "status": "ringing"})

        assert broadcaster.client_count == 1
        assert healthy.send_json.await_count == 2
        assert broken.send_json.await_count == 1

    @pytest.mark.asyncio
    async def test_publish_without_clients(self):
        broadcaster = EventBroadcaster()

        await broadcaster.publish("call-status", {"callSid": "CA1", "status": "ringing"})

        assert broadcaster.client_count == 0

    @pytest.mark.asyncio
    async def test_disconnect(self):
        broadcaster = EventBroadcaster()
        websocket = fake_websocket()
        await broadcaster.connect(websocket)

        broadcaster.disconnect(websocket)
        broadcaster.disconnect(websocket)

        assert broadcaster.client_count == 0

