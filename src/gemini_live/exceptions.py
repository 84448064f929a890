"""
Exceptions raised by the Gemini Live upstream session client.
"""


class GeminiLiveError(Exception):
    """Base class for upstream session failures."""


class UpstreamCredentialError(GeminiLiveError):
    """The API key is missing or was rejected. Retrying will not help."""


class UpstreamSetupTimeoutError(GeminiLiveError):
    """No setupComplete event arrived within the handshake window."""


class UpstreamTransportError(GeminiLiveError):
    """The provider socket failed to open, errored or closed unexpectedly."""


class UpstreamNotConnectedError(GeminiLiveError):
    """A send was attempted while the session is not ready or already closed."""
