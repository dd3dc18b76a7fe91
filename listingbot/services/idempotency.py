from collections import OrderedDict
from typing import Optional

from listingbot.logging_config import get_logger

logger = get_logger("idempotency")

DEFAULT_CAPACITY = 1000


class IdempotencyFilter:
    """
    Bounded, insertion-ordered set of recently seen inbound event ids.

    Advisory only: once an id has been evicted a redelivery of that event is
    processed again. Correctness relies on the confirmation gate of the state
    machine and on the listing upsert being keyed by the confirming event.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._seen: OrderedDict[str, None] = OrderedDict()

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, event_id: str) -> bool:
        return event_id in self._seen

    def is_duplicate(self, event_id: str) -> bool:
        return event_id in self._seen

    def mark_seen(self, event_id: str) -> None:
        if event_id in self._seen:
            self._seen.move_to_end(event_id)
            return
        self._seen[event_id] = None
        while len(self._seen) > self.capacity:
            evicted, _ = self._seen.popitem(last=False)
            logger.debug(f"Evicted event id {evicted} from dedup window")

    def check_and_mark(self, event_id: str) -> bool:
        """Return True if event_id was already seen; otherwise record it."""
        if self.is_duplicate(event_id):
            return True
        self.mark_seen(event_id)
        return False


def build_event_id(
    update_id: Optional[int],
    chat_id: Optional[int | str],
    message_id: Optional[int],
) -> Optional[str]:
    if update_id is not None:
        return str(update_id)
    if chat_id is not None and message_id is not None:
        return f"{chat_id}:{message_id}"
    return None
