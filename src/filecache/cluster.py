"""Index propagation between processes sharing one cache directory.

Each process keeps its own MetadataStore. Local mutations are published as
messages through a transport supplied by the host application, and inbound
messages replay the same mutation on the local store without touching the
filesystem. Nothing is ever sent in reply to a received message.

Message schema::

    {"action": "add", "path": str, "entry": {"size": int, "last_access_time": int}}
    {"action": "touch", "path": str}
    {"action": "remove", "path": str}
    {"action": "save"}
"""

import logging
from typing import Any, Callable, Mapping, Optional

from typing_extensions import Literal, TypedDict

from filecache.persistence import PersistenceManager
from filecache.store import CacheEntry, MetadataStore
from filecache.utils import now_ms

logger = logging.getLogger(__name__)


class EntryPayload(TypedDict):
    size: int
    last_access_time: int


class AddMessage(TypedDict):
    action: Literal["add"]
    path: str
    entry: EntryPayload


class PathMessage(TypedDict):
    action: Literal["touch", "remove"]
    path: str


class SaveMessage(TypedDict):
    action: Literal["save"]


ClusterMessage = Mapping[str, Any]
Publisher = Callable[[ClusterMessage], None]


class ClusterSync:
    """Translates between local index mutations and cluster messages."""

    def __init__(
        self,
        store: MetadataStore,
        persistence: PersistenceManager,
        publish: Optional[Publisher] = None,
        enabled: bool = False,
        clock: Callable[[], int] = now_ms,
    ):
        """Initialize cluster sync.

        Args:
            store: Local index
            persistence: Local snapshot manager (write counter and save timer)
            publish: Transport callback for outbound messages
            enabled: Whether cluster mode is on; when off nothing is sent
                and inbound messages are ignored
            clock: Millisecond clock
        """
        self.store = store
        self.persistence = persistence
        self.publish = publish
        self.enabled = enabled
        self._clock = clock

    # ==================== Outbound ====================

    def _send(self, message: ClusterMessage) -> None:
        if not self.enabled or self.publish is None:
            return
        try:
            self.publish(message)
        except Exception as e:
            logger.warning(f"Failed to publish {message.get('action')} message: {e}")

    def publish_add(self, entry: CacheEntry) -> None:
        message: AddMessage = {
            "action": "add",
            "path": entry.path,
            "entry": {"size": entry.size, "last_access_time": entry.last_access_time},
        }
        self._send(message)

    def publish_touch(self, path: str) -> None:
        message: PathMessage = {"action": "touch", "path": path}
        self._send(message)

    def publish_remove(self, path: str) -> None:
        message: PathMessage = {"action": "remove", "path": path}
        self._send(message)

    def publish_save(self) -> None:
        message: SaveMessage = {"action": "save"}
        self._send(message)

    # ==================== Inbound ====================

    def handle(self, message: ClusterMessage) -> bool:
        """Apply a message from a peer to the local index.

        Unknown actions and malformed messages are ignored.

        Returns:
            True if the message changed local state
        """
        if not self.enabled:
            return False
        if not isinstance(message, Mapping):
            logger.debug(f"Ignoring non-mapping cluster message: {message!r}")
            return False

        action = message.get("action")
        try:
            if action == "add":
                return self._handle_add(message["path"], message["entry"])
            if action == "touch":
                return self.store.touch(message["path"], self._clock())
            if action == "remove":
                return self._handle_remove(message["path"])
            if action == "save":
                self.persistence.mark_saved(self._clock())
                return True
        except (KeyError, TypeError, ValueError) as e:
            logger.debug(f"Ignoring malformed {action} message: {e}")
            return False

        logger.debug(f"Ignoring unknown cluster action {action!r}")
        return False

    def _handle_add(self, path: str, entry: Mapping[str, Any]) -> bool:
        if path in self.store:
            # The size was recorded when the peer wrote the file
            return self.store.touch(path, self._clock())
        self.store.upsert(path, int(entry["size"]), int(entry["last_access_time"]))
        self.persistence.record_write()
        logger.debug(f"Cluster add: {path}")
        return True

    def _handle_remove(self, path: str) -> bool:
        if self.store.remove(path) is None:
            return False
        self.persistence.record_write()
        logger.debug(f"Cluster remove: {path}")
        return True
