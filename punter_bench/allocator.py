from __future__ import annotations

from typing import Iterable

from punter_bench.status_client import ServerSlot, SlotStatus


def prepare_list(slots: Iterable[ServerSlot]) -> list[ServerSlot]:
    """Keep joinable servers, nearly-full games first.

    The status page keeps reporting "waiting" for a server whose seats are all
    taken, so a full WAIT slot is dropped along with every non-WAIT one.
    """
    out = [
        slot
        for slot in slots
        if slot.status == SlotStatus.WAIT and slot.punter_count < slot.max_punter_count
    ]
    out.sort(key=lambda slot: slot.free_capacity)
    return out


def is_eager_only(slot: ServerSlot, eager_name: str) -> bool:
    return bool(slot.punter_names) and set(slot.punter_names) == {eager_name}


def allocate(
    slots: list[ServerSlot],
    map_id: str,
    punter_name: str,
    avoid_eager: bool = False,
    eager_name: str = "eager punter",
) -> ServerSlot | None:
    """Take the first matching slot out of ``slots``.

    Greedy single pass: the slot is removed from the list so a snapshot never
    hands the same server out twice.  ``None`` leaves the list untouched.
    """
    for index, slot in enumerate(slots):
        if slot.map_id != map_id:
            continue
        # Don't play with yourself.
        if punter_name in slot.punter_names:
            continue
        if avoid_eager and is_eager_only(slot, eager_name):
            continue
        del slots[index]
        return slot
    return None
