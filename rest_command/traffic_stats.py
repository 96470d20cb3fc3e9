"""TrafficStats - process-wide byte counters split by connection class.

Executors report the bytes counted for each response with add_traffic(). The
connection class (Wi-Fi or mobile) is asked of the ConnectivityClassifier at
report time. Totals survive restarts through a KeyValueStore; saves are
coalesced so that only every skip_interval-th non-forced save reaches the
store.

One TrafficStats per process is expected; RestContext owns it. Every mutation
is serialized by the instance lock.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Protocol, runtime_checkable

from rest_command.models import ConnectionClass, TrafficSnapshot
from rest_command.storage import KeyValueStore

logger = logging.getLogger(__name__)

# Coalesce saves: persist once every SKIP_INTERVAL non-forced calls
SKIP_INTERVAL = 50

WIFI_TOTAL_KEY = "wifi_total_traffic"
MOBILE_TOTAL_KEY = "mobile_total_traffic"


@runtime_checkable
class ConnectivityClassifier(Protocol):
    """Answers which network the process is using right now."""

    def is_wifi(self) -> bool:
        ...

    def is_mobile(self) -> bool:
        ...


class StaticConnectivity:
    """Classifier reporting a fixed, settable connection class.

    Hosts without a notion of Wi-Fi vs mobile data (servers, desktops) use
    this with the class from TrafficConfig.
    """

    def __init__(self, connection_class: ConnectionClass = ConnectionClass.WIFI) -> None:
        self.connection_class = ConnectionClass(connection_class)

    def is_wifi(self) -> bool:
        return self.connection_class is ConnectionClass.WIFI

    def is_mobile(self) -> bool:
        return self.connection_class is ConnectionClass.MOBILE


class TrafficStats:
    """Running totals and per-session counters of response bytes."""

    def __init__(
        self,
        store: KeyValueStore,
        connectivity: ConnectivityClassifier,
        skip_interval: int = SKIP_INTERVAL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if skip_interval < 1:
            raise ValueError(f"skip_interval must be >= 1, got {skip_interval}")
        self._store = store
        self._connectivity = connectivity
        self._skip_interval = skip_interval
        self._clock = clock
        self._lock = threading.RLock()

        self._wifi_total = 0
        self._wifi_session = 0
        self._mobile_total = 0
        self._mobile_session = 0
        self._save_counter = 0
        self._last_reset_time = clock()
        self._last_session_time = self._last_reset_time

    @property
    def skip_interval(self) -> int:
        return self._skip_interval

    def add_traffic(self, traffic: int) -> int:
        """Add traffic bytes to the current connection class.

        Returns the grand total. If the classifier reports neither Wi-Fi nor
        mobile, nothing is counted.
        """
        with self._lock:
            if self._connectivity.is_wifi():
                self._wifi_total += traffic
                self._wifi_session += traffic
                logger.debug("Added %d bytes to the Wi-Fi counter", traffic)
            elif self._connectivity.is_mobile():
                self._mobile_total += traffic
                self._mobile_session += traffic
                logger.debug("Added %d bytes to the mobile counter", traffic)
            else:
                logger.warning(
                    "Traffic of %d bytes is neither Wi-Fi nor mobile, not counted", traffic
                )
                return self.total_traffic
            self.save_stats(False)
            return self.total_traffic

    def save_stats(self, forced: bool = False) -> bool:
        """Persist both totals if forced or on every skip_interval-th call.

        Returns True if the store was written.
        """
        with self._lock:
            self._save_counter = 0 if forced else self._save_counter + 1
            if self._save_counter % self._skip_interval != 0:
                return False
            logger.debug("Saving traffic stats")
            self._store.put(
                {
                    WIFI_TOTAL_KEY: self._wifi_total,
                    MOBILE_TOTAL_KEY: self._mobile_total,
                }
            )
            return True

    def restore_stats(self) -> None:
        """Load persisted totals; keys missing from the store keep their value."""
        with self._lock:
            logger.debug("Restoring traffic stats")
            wifi_total = self._store.get(WIFI_TOTAL_KEY)
            if wifi_total is not None:
                self._wifi_total = wifi_total
            mobile_total = self._store.get(MOBILE_TOTAL_KEY)
            if mobile_total is not None:
                self._mobile_total = mobile_total

    def start_session(self) -> None:
        with self._lock:
            self._wifi_session = 0
            self._mobile_session = 0
            self._last_session_time = self._clock()

    def reset(self) -> None:
        """Start a new session, zero both totals and persist immediately."""
        with self._lock:
            self.start_session()
            self._last_reset_time = self._last_session_time
            self._wifi_total = 0
            self._mobile_total = 0
            self.save_stats(True)

    @property
    def wifi_total_traffic(self) -> int:
        return self._wifi_total

    @property
    def wifi_session_traffic(self) -> int:
        return self._wifi_session

    @property
    def mobile_total_traffic(self) -> int:
        return self._mobile_total

    @property
    def mobile_session_traffic(self) -> int:
        return self._mobile_session

    @property
    def total_traffic(self) -> int:
        return self._wifi_total + self._mobile_total

    @property
    def last_session_data(self) -> int:
        return self._wifi_session + self._mobile_session

    @property
    def last_reset_time(self) -> float:
        return self._last_reset_time

    @property
    def last_session_time(self) -> float:
        return self._last_session_time

    def snapshot(self) -> TrafficSnapshot:
        with self._lock:
            return TrafficSnapshot(
                wifi_total=self._wifi_total,
                wifi_session=self._wifi_session,
                mobile_total=self._mobile_total,
                mobile_session=self._mobile_session,
                last_reset_time=self._last_reset_time,
                last_session_time=self._last_session_time,
            )

    def __repr__(self) -> str:
        return (
            f"TrafficStats(wifi_total={self._wifi_total}, wifi_session={self._wifi_session}, "
            f"mobile_total={self._mobile_total}, mobile_session={self._mobile_session}, "
            f"last_session_time={self._last_session_time}, last_reset_time={self._last_reset_time})"
        )
