"""
Registry of device sessions keyed by platform address.
"""

from typing import Dict, List, Optional

from .session import ConnectionState, DeviceSession


class DuplicateSessionError(Exception):
    """Raised when a second session is registered for an address."""
    pass


class DeviceRegistry:
    """
    Owns every DeviceSession for its whole lifetime.

    Sessions are added on the first connect attempt and removed on explicit
    disconnect or once their retries are exhausted. Only the event loop
    mutates the registry, so no locking is involved.
    """

    def __init__(self):
        self._sessions: Dict[str, DeviceSession] = {}

    def __contains__(self, address: str) -> bool:
        return address in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def add(self, session: DeviceSession) -> DeviceSession:
        if session.address in self._sessions:
            raise DuplicateSessionError(f"Session for {session.address} already registered")
        self._sessions[session.address] = session
        return session

    def get(self, address: str) -> Optional[DeviceSession]:
        return self._sessions.get(address)

    def remove(self, address: str) -> Optional[DeviceSession]:
        return self._sessions.pop(address, None)

    def sessions(self) -> List[DeviceSession]:
        """All sessions ordered by device id."""
        return sorted(self._sessions.values(), key=lambda s: (s.device_id, s.address))

    def ready_sessions(self) -> List[DeviceSession]:
        return [session for session in self.sessions() if session.is_ready]

    def addresses(self) -> List[str]:
        return list(self._sessions.keys())

    def get_statistics(self) -> Dict[str, int]:
        stats = {state.value: 0 for state in ConnectionState}
        for session in self._sessions.values():
            stats[session.state.value] += 1
        stats["total"] = len(self._sessions)
        return stats
