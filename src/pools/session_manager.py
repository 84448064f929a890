"""
Registry of live relay sessions, one per connected downstream client.

Each entry is owned by the WebSocket endpoint that created it; the registry only
tracks membership for health reporting and shutdown.
"""
import asyncio
from datetime import datetime
from typing import Any, Dict, List

from utils.ml_logging import get_logger

logger = get_logger("pools.session_manager")


class RelaySessionManager:
    """
    asyncio-safe registry of active relay sessions.

    Uses asyncio.Lock so concurrent connect/disconnect handlers never race on
    the underlying dict.
    """

    def __init__(self):
        self._sessions: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def add_session(self, session_id: str, relay: Any) -> None:
        """Register a relay under its session id."""
        async with self._lock:
            self._sessions[session_id] = {
                "relay": relay,
                "start_time": datetime.now(),
            }
            logger.info(f"Added relay session {session_id}. Total sessions: {len(self._sessions)}")

    async def remove_session(self, session_id: str) -> bool:
        """Unregister a relay. Returns True if it was registered."""
        async with self._lock:
            if session_id in self._sessions:
                del self._sessions[session_id]
                logger.info(f"Removed relay session {session_id}. Remaining sessions: {len(self._sessions)}")
                return True
            return False

    async def get_session_count(self) -> int:
        async with self._lock:
            return len(self._sessions)

    async def close_all(self) -> int:
        """
        Close every registered relay (used on application shutdown) and return
        how many were closed.
        """
        async with self._lock:
            relays: List[Any] = [entry["relay"] for entry in self._sessions.values()]
            self._sessions.clear()

        for relay in relays:
            try:
                await relay.close()
            except Exception as e:
                logger.error(f"Error closing relay during shutdown: {e}")
        if relays:
            logger.info(f"Closed {len(relays)} relay sessions on shutdown")
        return len(relays)
