# =============================================================================
# pos_core/offline/connection_manager.py
# Reachability of the Remote Authority
# =============================================================================
"""
ConnectionManager - tracks whether the remote authority is reachable.

Features:
- Boolean reachability flag plus a richer ConnectionStatus
- Callbacks on every status transition
- Separate "became reachable" notification for reconnect handling
- Explicit reports from callers (set_reachable) and probe-based checks
- Optional background monitoring thread

The sync coordinator does not subscribe here; callers that want a sync
pass on reconnect wire that up themselves (see OfflineRuntime).
"""

from __future__ import annotations
import socket
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional
from urllib.parse import urlparse
import logging

logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"           # Remote authority reachable
    OFFLINE = "offline"         # No connectivity
    DEGRADED = "degraded"       # Network up but remote authority unavailable
    UNKNOWN = "unknown"         # Initial state


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None

    @property
    def is_reachable(self) -> bool:
        return self.status == ConnectionStatus.ONLINE


# Returns True when the remote authority answered.
Probe = Callable[[], bool]


def tcp_probe(url: Optional[str], timeout: float = 5.0) -> Probe:
    """
    Build a probe that opens a TCP connection to the host in url.

    With no url configured the probe always succeeds (local-only mode).
    """
    parsed = urlparse(url) if url else None
    host = parsed.hostname if parsed else None
    port = (parsed.port or (443 if parsed.scheme == "https" else 80)) if parsed else None

    def probe() -> bool:
        if not host:
            return True
        try:
            with socket.create_connection((host, port), timeout=timeout):
                return True
        except OSError as e:
            logger.debug(f"Probe to {host}:{port} failed: {e}")
            return False

    return probe


class ConnectionManager:
    """
    Connectivity observer for the remote authority.

    Usage:
        manager = ConnectionManager(probe=tcp_probe(settings.remote_url))
        manager.on_reconnect(lambda state: print("back online"))
        manager.check_connection()
        if manager.is_reachable:
            ...
    """

    # Configuration
    CHECK_INTERVAL_ONLINE = 30      # Seconds between checks when online
    CHECK_INTERVAL_OFFLINE = 10     # Seconds between checks when offline

    def __init__(self, probe: Optional[Probe] = None, initially_reachable: Optional[bool] = None):
        """
        Args:
            probe: Callable used by check_connection(); None disables probing
            initially_reachable: Seed the state without probing
        """
        self._probe = probe
        self._state = ConnectionState()
        self._state_lock = threading.RLock()
        self._callbacks: List[Callable[[ConnectionState], None]] = []
        self._reconnect_callbacks: List[Callable[[ConnectionState], None]] = []
        self._monitor_thread: Optional[threading.Thread] = None
        self._stop_monitoring = threading.Event()

        if initially_reachable is not None:
            self._state.status = (
                ConnectionStatus.ONLINE if initially_reachable else ConnectionStatus.OFFLINE
            )

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def is_reachable(self) -> bool:
        return self._state.is_reachable

    @property
    def is_offline(self) -> bool:
        return not self._state.is_reachable

    def _transition(self, new_status: ConnectionStatus, error: Optional[str] = None) -> ConnectionState:
        with self._state_lock:
            old_status = self._state.status
            self._state.status = new_status
            self._state.last_check = datetime.now()

            if new_status == ConnectionStatus.ONLINE:
                self._state.last_online = self._state.last_check
                self._state.consecutive_failures = 0
                self._state.error_message = None
            else:
                self._state.consecutive_failures += 1
                self._state.error_message = error

            changed = old_status != new_status

        if changed:
            logger.info(f"Connection status changed: {old_status.value} -> {new_status.value}")
            self._notify(self._callbacks)
            if new_status == ConnectionStatus.ONLINE:
                self._notify(self._reconnect_callbacks)

        return self._state

    def set_reachable(self, reachable: bool, reason: Optional[str] = None) -> ConnectionState:
        """Report reachability observed by a caller (e.g. a failed request)."""
        status = ConnectionStatus.ONLINE if reachable else ConnectionStatus.OFFLINE
        return self._transition(status, reason)

    def mark_degraded(self, reason: Optional[str] = None) -> ConnectionState:
        """Network is up but the remote authority refused or timed out."""
        return self._transition(ConnectionStatus.DEGRADED, reason)

    def check_connection(self) -> ConnectionState:
        """
        Run the probe and update state.

        Returns:
            Updated ConnectionState (unchanged if no probe is configured)
        """
        if self._probe is None:
            return self._state

        try:
            reachable = bool(self._probe())
            error = None if reachable else "Remote authority did not answer"
        except OSError as e:
            reachable = False
            error = str(e)

        return self.set_reachable(reachable, error)

    def start_monitoring(self) -> None:
        """Start background connection monitoring."""
        if self._probe is None:
            logger.debug("No probe configured, monitoring not started")
            return
        if self._monitor_thread is not None and self._monitor_thread.is_alive():
            return

        self._stop_monitoring.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitoring_loop,
            daemon=True,
            name="ConnectionMonitor"
        )
        self._monitor_thread.start()
        logger.debug("Connection monitoring started")

    def stop_monitoring(self) -> None:
        """Stop background connection monitoring."""
        self._stop_monitoring.set()
        if self._monitor_thread:
            self._monitor_thread.join(timeout=5)
        logger.debug("Connection monitoring stopped")

    def _monitoring_loop(self) -> None:
        while not self._stop_monitoring.is_set():
            interval = (
                self.CHECK_INTERVAL_ONLINE
                if self.is_reachable
                else self.CHECK_INTERVAL_OFFLINE
            )
            if self._stop_monitoring.wait(timeout=interval):
                break
            self.check_connection()

    def register_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """Register a callback for every status change."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def on_reconnect(self, callback: Callable[[ConnectionState], None]) -> None:
        """Register a callback for the transition into ONLINE only."""
        if callback not in self._reconnect_callbacks:
            self._reconnect_callbacks.append(callback)

    def _notify(self, callbacks: List[Callable[[ConnectionState], None]]) -> None:
        for callback in list(callbacks):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}", exc_info=True)

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        return {
            "status": self._state.status.value,
            "is_reachable": self.is_reachable,
            "last_check": self._state.last_check.isoformat() if self._state.last_check else None,
            "last_online": self._state.last_online.isoformat() if self._state.last_online else None,
            "failures": self._state.consecutive_failures,
            "error": self._state.error_message,
        }
