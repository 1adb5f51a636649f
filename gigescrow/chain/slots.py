"""Slot arithmetic for Shelley-era Cardano networks.

Since the Shelley hard fork each network advances one slot per second from a
fixed reference point, so a wall-clock deadline maps to a slot without
asking the chain.
"""

from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass(frozen=True)
class SlotConfig:
    """Reference point of a network's slot clock."""

    zero_time_ms: int
    zero_slot: int
    slot_length_ms: int = 1000


SLOT_CONFIGS = {
    "mainnet": SlotConfig(zero_time_ms=1596059091000, zero_slot=4492800),
    "preprod": SlotConfig(zero_time_ms=1655769600000, zero_slot=86400),
    "preview": SlotConfig(zero_time_ms=1666656000000, zero_slot=0),
}


def _config(network: str) -> SlotConfig:
    try:
        return SLOT_CONFIGS[network]
    except KeyError:
        raise ValueError(f"No slot configuration for network: {network}")


def _to_ms(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def datetime_to_slot(moment: datetime, network: str) -> int:
    """Slot containing ``moment`` on ``network``."""
    config = _config(network)
    elapsed = _to_ms(moment) - config.zero_time_ms
    return config.zero_slot + elapsed // config.slot_length_ms


def slot_to_datetime(slot: int, network: str) -> datetime:
    """Start time of ``slot`` on ``network``."""
    config = _config(network)
    ms = config.zero_time_ms + (slot - config.zero_slot) * config.slot_length_ms
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
