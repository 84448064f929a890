from enum import Enum


class RelayState(Enum):
    """Lifecycle of one downstream client's relay session"""

    IDLE = "idle"  # No upstream session; audio/video are ignored
    STARTING = "starting"  # Upstream handshake in flight
    ACTIVE = "active"  # Upstream ready, media is forwarded
    STOPPING = "stopping"  # Upstream being torn down

    def __str__(self) -> str:
        """Return the string value for easy comparison"""
        return self.value

    @property
    def accepts_media(self) -> bool:
        """Check if audio/video chunks should be forwarded in this state"""
        return self is RelayState.ACTIVE


class UpstreamState(Enum):
    """Handshake state machine of a single provider connection"""

    CONNECTING = "connecting"
    AWAITING_SETUP_ACK = "awaiting_setup_ack"
    READY = "ready"
    CLOSED = "closed"

    def __str__(self) -> str:
        return self.value


class SpeakerState(Enum):
    """Presentation state driven by the playback scheduler"""

    LISTENING = "listening"
    SPEAKING = "speaking"

    def __str__(self) -> str:
        return self.value


class DownstreamStatus(Enum):
    """Values of the `status` field in relay -> client status messages"""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    STOPPED = "stopped"

    def __str__(self) -> str:
        return self.value

