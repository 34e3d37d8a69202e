"""Channel resolution, active slot catalog and effective slot capacity."""

from __future__ import annotations

from bisect import bisect_right
from decimal import Decimal
from typing import Optional, Sequence

from scheduling_engine.domain.constraints import (
    CapacityPolicy,
    normalize_slot,
    validate_capacity_policy,
)
from scheduling_engine.domain.models import Channel
from scheduling_engine.repository.data_repository import DataRepository
from scheduling_engine.utils.config import Settings, get_settings
from scheduling_engine.utils.logger import get_logger


logger = get_logger(__name__)


class ChannelNotFoundError(Exception):
    """Raised when a channel reference does not resolve to an active channel."""


def next_slot(slots: Sequence[str], current: str) -> Optional[str]:
    """Return the first label strictly after ``current`` in an ordered catalog."""
    index = bisect_right(list(slots), current)
    if index >= len(slots):
        return None
    return slots[index]


class CapacityResolver:
    """Looks up channel capacity and the ordered active slot catalog."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        policy: Optional[CapacityPolicy] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._policy = policy or CapacityPolicy(
            shared_capacity_slots=dict(self._settings.shared_capacity_slots)
        )
        validate_capacity_policy(self._policy)

    def resolve_channel(self, reference: str) -> Optional[Channel]:
        """Resolve by canonical id, then by name; inactive channels do not resolve."""
        key = str(reference or "").strip()
        if not key:
            return None
        channel = self._repository.get_channel(key) or self._repository.find_channel_by_name(key)
        if channel is None:
            logger.info("Channel not found | reference=%s", key)
            return None
        if not channel.active:
            logger.info("Channel inactive | reference=%s | channel_id=%s", key, channel.channel_id)
            return None
        return channel

    def require_channel(self, reference: str) -> Channel:
        channel = self.resolve_channel(reference)
        if channel is None:
            raise ChannelNotFoundError(f"Channel '{reference}' not found or inactive")
        return channel

    def active_slots(self, channel_reference: str, date: str) -> tuple[str, ...]:
        """Ordered active labels for the channel; empty when it does not resolve.

        The catalog is shared by all channels and does not vary by date.
        """
        del date
        if self.resolve_channel(channel_reference) is None:
            return ()
        return self._repository.list_active_time_slots()

    def effective_capacity(
        self,
        channel: Channel,
        slot: str,
        apply_shared_capacity: bool = True,
    ) -> Decimal:
        if not apply_shared_capacity:
            return channel.capacity
        return channel.capacity * self._policy.multiplier_for(normalize_slot(slot))
