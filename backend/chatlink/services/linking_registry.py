"""In-process registry of active linking sessions.

Each entry mirrors one stored session and owns its expiry timer. The
registry is not locked itself: every mutation happens inside the linking
service's serialization lock, on the event loop thread.
"""

import asyncio
import uuid
from collections import OrderedDict
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

# How many retired codes are remembered for late replies
_RETIRED_CODES_LIMIT = 1024

ExpiryCallback = Callable[[uuid.UUID, str], None]


class RetireReason(str, Enum):
    """Why a session left the registry."""

    REPLACED = "replaced"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    LINKED = "linked"


@dataclass
class RegistryEntry:
    """One active linking session.

    Attributes:
        user_id: Owning user.
        code: Code of the stored session this entry mirrors.
        started_at: When the session was registered.
        timer: Expiry timer; cancelling it is O(1).
    """

    user_id: uuid.UUID
    code: str
    started_at: datetime
    timer: asyncio.TimerHandle


class LinkingSessionRegistry:
    """Index of active linking sessions keyed by user id.

    Also remembers a bounded set of recently retired codes, with the reason
    each was retired, so a late message carrying one gets the right reply:
    "expired" for a code whose deadline passed, "no longer active" otherwise.
    """

    def __init__(self) -> None:
        self._entries: dict[uuid.UUID, RegistryEntry] = {}
        self._retired_codes: OrderedDict[str, RetireReason] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._entries

    def __iter__(self) -> Iterator[uuid.UUID]:
        return iter(list(self._entries))

    def get(self, user_id: uuid.UUID) -> RegistryEntry | None:
        """Return the entry for ``user_id``, if any."""
        return self._entries.get(user_id)

    def install(
        self,
        user_id: uuid.UUID,
        code: str,
        *,
        started_at: datetime,
        delay_seconds: float,
        on_expire: ExpiryCallback,
    ) -> RegistryEntry:
        """Register a session, replacing (and disarming) any previous one.

        Must be called from a running event loop.

        Args:
            user_id: Owning user.
            code: Code of the stored session.
            started_at: Registration time.
            delay_seconds: Seconds until the expiry timer fires.
            on_expire: Called as ``on_expire(user_id, code)`` when the timer fires.

        Returns:
            The new RegistryEntry.
        """
        self.remove(user_id, RetireReason.REPLACED)
        loop = asyncio.get_running_loop()
        timer = loop.call_later(max(delay_seconds, 0.0), on_expire, user_id, code)
        entry = RegistryEntry(
            user_id=user_id,
            code=code,
            started_at=started_at,
            timer=timer,
        )
        self._entries[user_id] = entry
        self._retired_codes.pop(code, None)
        return entry

    def remove(
        self, user_id: uuid.UUID, reason: RetireReason = RetireReason.CANCELLED
    ) -> RegistryEntry | None:
        """Drop the entry for ``user_id`` and cancel its timer.

        Args:
            user_id: Owning user.
            reason: Remembered against the retired code.

        Returns:
            The removed entry, or None if the user had none.
        """
        entry = self._entries.pop(user_id, None)
        if entry is None:
            return None
        entry.timer.cancel()
        self._remember_retired(entry.code, reason)
        return entry

    def clear(self) -> None:
        """Cancel every timer and drop every entry."""
        for user_id in list(self._entries):
            self.remove(user_id)

    def retired_reason(self, code: str) -> RetireReason | None:
        """Why ``code`` was retired, or None if it is not remembered."""
        return self._retired_codes.get(code)

    def _remember_retired(self, code: str, reason: RetireReason) -> None:
        self._retired_codes[code] = reason
        self._retired_codes.move_to_end(code)
        while len(self._retired_codes) > _RETIRED_CODES_LIMIT:
            self._retired_codes.popitem(last=False)
