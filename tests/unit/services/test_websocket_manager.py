# tests/unit/services/test_websocket_manager.py
import json

from crosslist.integrations.events import SyncStatusEvent
from crosslist.services.websockets.manager import ConnectionManager


async def test_sync_event_is_broadcast_to_every_client(mocker):
    manager = ConnectionManager()
    first, second = mocker.AsyncMock(), mocker.AsyncMock()
    await manager.connect(first)
    await manager.connect(second)

    await manager.handle_sync_event(SyncStatusEvent(listing_id=5, platform="reverb", sync_status="error"))

    payload = json.loads(first.send_text.call_args.args[0])
    assert payload["type"] == "sync_status"
    assert payload["data"]["listing_id"] == 5
    second.send_text.assert_awaited_once()


async def test_dead_connection_is_dropped(mocker):
    manager = ConnectionManager()
    alive, dead = mocker.AsyncMock(), mocker.AsyncMock()
    dead.send_text.side_effect = RuntimeError("closed")
    await manager.connect(alive)
    await manager.connect(dead)

    await manager.broadcast({"type": "ping"})

    assert manager.active_connections == [alive]
