import pytest

from models.channels import BroadcastRole, BroadcastStatus
from services.broadcast_service import (
    BroadcastRegistry,
    BroadcastTokenService,
    LiveBroadcast,
    broadcaster_identity,
)


class BrokenTokens:
    url = "wss://livekit.example.com"
    configured = True

    def create_token(self, *args, **kwargs):
        raise ValueError("LiveKit API key and secret must be configured")


def test_broadcaster_gets_publish_grant():
    broadcast = LiveBroadcast("sess-1", BroadcastTokenService(url="wss://livekit.example.com"))
    grant = broadcast.start_broadcast()

    assert grant.role == BroadcastRole.BROADCASTER
    assert grant.room_name == "demo-sess-1"
    assert grant.identity == broadcaster_identity("sess-1")
    assert grant.token
    assert broadcast.status == BroadcastStatus.CONNECTING


def test_token_failure_degrades_instead_of_raising():
    broadcast = LiveBroadcast("sess-1", BrokenTokens())
    broadcast.viewer_joined("viewer-a")

    assert broadcast.start_broadcast() is None
    assert broadcast.status == BroadcastStatus.FAILED
    assert broadcast.viewer_count == 0


def test_viewer_count_never_goes_negative():
    seen = []
    broadcast = LiveBroadcast("sess-1", BroadcastTokenService())
    broadcast.on_viewers = seen.append

    broadcast.viewer_left("viewer-a")
    broadcast.viewer_joined("viewer-a")
    broadcast.viewer_joined("viewer-a")
    broadcast.viewer_joined()
    broadcast.viewer_joined(broadcaster_identity("sess-1"))
    broadcast.viewer_left("viewer-a")
    broadcast.viewer_left()
    broadcast.viewer_left()

    assert broadcast.viewer_count == 0
    assert seen == [0, 1, 1, 2, 1, 0, 0]


def test_connection_failure_resets_viewers():
    broadcast = LiveBroadcast("sess-1", BroadcastTokenService())
    broadcast.viewer_joined("viewer-a")
    assert broadcast.on_connection_state("connected") == BroadcastStatus.CONNECTED
    assert broadcast.on_connection_state("failed") == BroadcastStatus.FAILED
    assert broadcast.viewer_count == 0
    # unknown states are ignored
    assert broadcast.on_connection_state("reconnecting") == BroadcastStatus.FAILED


@pytest.mark.asyncio
async def test_refresh_without_livekit_url_keeps_local_count():
    broadcast = LiveBroadcast("sess-1", BroadcastTokenService())
    broadcast.viewer_joined("viewer-a")
    assert await broadcast.refresh_viewer_count() == 1


def test_registry_lookup_by_room_and_close():
    registry = BroadcastRegistry()
    broadcast = registry.open("sess-1", BroadcastTokenService())
    assert registry.open("sess-1") is broadcast
    assert registry.by_room("demo-sess-1") is broadcast

    broadcast.viewer_joined("viewer-a")
    registry.close("sess-1")
    assert registry.get("sess-1") is None
    assert broadcast.status == BroadcastStatus.IDLE
    assert broadcast.viewer_count == 0
