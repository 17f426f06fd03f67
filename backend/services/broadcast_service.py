# services/broadcast_service.py
"""
Live Broadcast Unit - relays the candidate's demo stream to management viewers
through a LiveKit room and keeps a viewer count.

Nothing in here raises into the demo flow. Any failure flips the unit to
`failed` with zero viewers and is logged.
"""
import datetime
import json
from typing import Callable, Dict, Optional, Set

from livekit import api

from config import get_settings
from models.channels import BroadcastGrant, BroadcastRole, BroadcastSnapshot, BroadcastStatus
from utils.logger import get_logger

logger = get_logger("BroadcastService")


def room_name_for(session_id: str) -> str:
    return f"demo-{session_id}"


def broadcaster_identity(session_id: str) -> str:
    return f"candidate-{session_id}"


class BroadcastTokenService:
    """Generate LiveKit access tokens for the demo room"""

    def __init__(self, api_key: Optional[str] = None, api_secret: Optional[str] = None,
                 url: Optional[str] = None, ttl_minutes: Optional[int] = None):
        settings = get_settings()
        self.api_key = api_key or settings.livekit_api_key
        self.api_secret = api_secret or settings.livekit_api_secret
        self.url = url or settings.livekit_url
        self.ttl = datetime.timedelta(minutes=ttl_minutes or settings.livekit_token_ttl_minutes)

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.api_secret)

    def create_token(self, identity: str, room_name: str, role: BroadcastRole,
                     metadata: Optional[dict] = None) -> str:
        """
        Create a LiveKit access token.

        Broadcasters may only publish; viewers may only subscribe.
        """
        if not self.configured:
            raise ValueError("LiveKit API key and secret must be configured")

        publishing = role == BroadcastRole.BROADCASTER
        token = (
            api.AccessToken(self.api_key, self.api_secret)
            .with_identity(identity)
            .with_name(identity)
            .with_grants(
                api.VideoGrants(
                    room_join=True,
                    room=room_name,
                    can_publish=publishing,
                    can_subscribe=not publishing,
                    can_publish_data=publishing,
                )
            )
            .with_ttl(self.ttl)
        )
        if metadata:
            token = token.with_metadata(json.dumps(metadata))

        jwt_token = token.to_jwt()
        logger.info(f"✅ Created {role.value} token for {identity} in room {room_name}")
        return jwt_token

    def webhook_receiver(self) -> api.WebhookReceiver:
        return api.WebhookReceiver(api.TokenVerifier(self.api_key, self.api_secret))


class LiveBroadcast:
    """One candidate's demo broadcast."""

    def __init__(self, session_id: str, tokens: Optional[BroadcastTokenService] = None):
        self.session_id = session_id
        self.room_name = room_name_for(session_id)
        self.tokens = tokens or BroadcastTokenService()
        self.status = BroadcastStatus.IDLE
        self.stream_label: Optional[str] = None
        self._viewers: Set[str] = set()
        self._anonymous_viewers = 0
        self.on_viewers: Optional[Callable[[int], None]] = None

    @property
    def viewer_count(self) -> int:
        return len(self._viewers) + self._anonymous_viewers

    def snapshot(self) -> BroadcastSnapshot:
        return BroadcastSnapshot(
            session_id=self.session_id,
            room_name=self.room_name,
            status=self.status,
            viewer_count=self.viewer_count,
        )

    def _notify_viewers(self) -> int:
        count = self.viewer_count
        if self.on_viewers is not None:
            self.on_viewers(count)
        return count

    def _degrade(self, reason: str) -> None:
        self.status = BroadcastStatus.FAILED
        self._viewers.clear()
        self._anonymous_viewers = 0
        logger.warning(f"⚠️ Broadcast degraded for {self.session_id}: {reason}")

    def start_broadcast(self, stream_label: str = "demo") -> Optional[BroadcastGrant]:
        """Hand the candidate a publish-only grant. Returns None when degraded."""
        self.stream_label = stream_label
        identity = broadcaster_identity(self.session_id)
        try:
            token = self.tokens.create_token(
                identity, self.room_name, BroadcastRole.BROADCASTER,
                metadata={"session_id": self.session_id, "stream": stream_label},
            )
        except Exception as e:
            logger.error(f"Failed to start broadcast: {e}", exc_info=True)
            self._degrade(str(e))
            return None

        self.status = BroadcastStatus.CONNECTING
        return BroadcastGrant(
            session_id=self.session_id,
            room_name=self.room_name,
            role=BroadcastRole.BROADCASTER,
            token=token,
            url=self.tokens.url,
            identity=identity,
        )

    def viewer_token(self, viewer_id: str) -> BroadcastGrant:
        identity = f"viewer-{viewer_id}"
        token = self.tokens.create_token(identity, self.room_name, BroadcastRole.VIEWER)
        return BroadcastGrant(
            session_id=self.session_id,
            room_name=self.room_name,
            role=BroadcastRole.VIEWER,
            token=token,
            url=self.tokens.url,
            identity=identity,
        )

    def on_connection_state(self, state: str) -> BroadcastStatus:
        try:
            status = BroadcastStatus(state)
        except ValueError:
            logger.warning(f"Unknown broadcast state '{state}' for {self.session_id}")
            return self.status
        if status == BroadcastStatus.FAILED:
            self._degrade("connection failed")
        else:
            self.status = status
        return self.status

    def viewer_joined(self, identity: Optional[str] = None) -> int:
        if identity == broadcaster_identity(self.session_id):
            return self.viewer_count
        if identity:
            self._viewers.add(identity)
        else:
            self._anonymous_viewers += 1
        return self._notify_viewers()

    def viewer_left(self, identity: Optional[str] = None) -> int:
        if identity and identity in self._viewers:
            self._viewers.discard(identity)
        elif self._anonymous_viewers > 0:
            self._anonymous_viewers -= 1
        return self._notify_viewers()

    async def refresh_viewer_count(self) -> int:
        """Reconcile the count with the LiveKit room service."""
        settings = get_settings()
        if not self.tokens.configured or not settings.livekit_url:
            return self.viewer_count
        lkapi = api.LiveKitAPI(settings.livekit_url, self.tokens.api_key, self.tokens.api_secret)
        try:
            response = await lkapi.room.list_participants(api.ListParticipantsRequest(room=self.room_name))
            me = broadcaster_identity(self.session_id)
            self._viewers = {p.identity for p in response.participants if p.identity != me}
            self._anonymous_viewers = 0
        except Exception as e:
            logger.warning(f"Could not refresh viewers for {self.room_name}: {e}")
        finally:
            await lkapi.aclose()
        return self._notify_viewers()

    def stop_broadcast(self) -> None:
        if self.status != BroadcastStatus.IDLE:
            logger.info(f"📴 Broadcast stopped for {self.session_id}")
        self.status = BroadcastStatus.IDLE
        self._viewers.clear()
        self._anonymous_viewers = 0


class BroadcastRegistry:
    """Active broadcasts keyed by session, shared by the WebSocket and webhook routes."""

    def __init__(self):
        self.active: Dict[str, LiveBroadcast] = {}

    def open(self, session_id: str, tokens: Optional[BroadcastTokenService] = None) -> LiveBroadcast:
        broadcast = self.active.get(session_id)
        if broadcast is None:
            broadcast = LiveBroadcast(session_id, tokens)
            self.active[session_id] = broadcast
        return broadcast

    def get(self, session_id: str) -> Optional[LiveBroadcast]:
        return self.active.get(session_id)

    def by_room(self, room_name: str) -> Optional[LiveBroadcast]:
        for broadcast in self.active.values():
            if broadcast.room_name == room_name:
                return broadcast
        return None

    def close(self, session_id: str) -> None:
        broadcast = self.active.pop(session_id, None)
        if broadcast:
            broadcast.stop_broadcast()


broadcast_registry = BroadcastRegistry()
