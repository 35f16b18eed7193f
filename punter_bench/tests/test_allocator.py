from __future__ import annotations

if __package__ is None or __package__ == "":
    import sys
    from pathlib import Path

    sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

import random
import unittest

from punter_bench.allocator import allocate, is_eager_only, prepare_list
from punter_bench.status_client import ServerSlot, SlotStatus

ME = "skobochka"
EAGER = "eager punter"


def make_slot(
    port: int,
    map_id: str = "sample",
    status: SlotStatus = SlotStatus.WAIT,
    count: int = 1,
    max_count: int = 2,
    names: tuple[str, ...] = ("someone",),
) -> ServerSlot:
    return ServerSlot(
        status=status,
        punter_names=names,
        punter_count=count,
        max_punter_count=max_count,
        extensions=frozenset(),
        port=port,
        map_id=map_id,
        map_url=f"http://maps.test/{map_id}.json",
        map_name=f"{map_id}.json",
    )


def random_slots(rng: random.Random, n: int) -> list[ServerSlot]:
    slots = []
    for i in range(n):
        status = rng.choice(list(SlotStatus))
        max_count = rng.randint(2, 8)
        count = rng.randint(0, max_count) if status == SlotStatus.WAIT else -1
        slots.append(
            make_slot(
                port=9000 + i,
                map_id=rng.choice(["sample", "lambda", "circle"]),
                status=status,
                count=count,
                max_count=max_count if status == SlotStatus.WAIT else -1,
                names=tuple(rng.sample([ME, EAGER, "alice", "bob"], rng.randint(0, 2))),
            )
        )
    return slots


class TestPrepareList(unittest.TestCase):
    def test_only_joinable_wait_slots_sorted_by_free_capacity(self) -> None:
        rng = random.Random(7)
        for _ in range(200):
            prepared = prepare_list(random_slots(rng, rng.randint(0, 12)))
            for slot in prepared:
                self.assertEqual(slot.status, SlotStatus.WAIT)
                self.assertLess(slot.punter_count, slot.max_punter_count)
            free = [slot.free_capacity for slot in prepared]
            self.assertEqual(free, sorted(free))

    def test_full_waiting_slot_is_dropped(self) -> None:
        full = make_slot(9001, count=2, max_count=2)
        open_slot = make_slot(9002, count=1, max_count=4)
        self.assertEqual(prepare_list([full, open_slot]), [open_slot])

    def test_nearly_full_first(self) -> None:
        roomy = make_slot(9001, count=0, max_count=8)
        tight = make_slot(9002, count=3, max_count=4)
        middle = make_slot(9003, count=2, max_count=5)
        self.assertEqual([s.port for s in prepare_list([roomy, tight, middle])], [9002, 9003, 9001])


class TestAllocate(unittest.TestCase):
    def test_miss_leaves_list_unchanged(self) -> None:
        rng = random.Random(11)
        for _ in range(100):
            prepared = prepare_list(random_slots(rng, rng.randint(0, 10)))
            before = list(prepared)
            self.assertIsNone(allocate(prepared, "no-such-map", ME))
            self.assertEqual(prepared, before)

    def test_hit_removes_exactly_that_slot(self) -> None:
        slots = prepare_list(
            [make_slot(9001, map_id="lambda"), make_slot(9002, map_id="sample"), make_slot(9003, map_id="sample")]
        )
        picked = allocate(slots, "sample", ME)
        self.assertIsNotNone(picked)
        self.assertEqual(picked.port, 9002)
        self.assertEqual(len(slots), 2)
        self.assertNotIn(picked, slots)

    def test_skips_slots_we_already_joined(self) -> None:
        slots = [make_slot(9001, names=("alice", ME)), make_slot(9002, names=("bob",))]
        picked = allocate(slots, "sample", ME)
        self.assertEqual(picked.port, 9002)
        self.assertIsNone(allocate(slots, "sample", ME))
        self.assertEqual(len(slots), 1)

    def test_avoid_eager(self) -> None:
        eager_only = make_slot(9001, names=(EAGER,))
        mixed = make_slot(9002, names=(EAGER, "alice"))
        slots = [eager_only, mixed]
        self.assertEqual(allocate(list(slots), "sample", ME, avoid_eager=False), eager_only)
        self.assertEqual(allocate(list(slots), "sample", ME, avoid_eager=True, eager_name=EAGER), mixed)
        self.assertIsNone(allocate([eager_only], "sample", ME, avoid_eager=True, eager_name=EAGER))

    def test_eager_only_needs_punters(self) -> None:
        self.assertFalse(is_eager_only(make_slot(9001, names=()), EAGER))
        self.assertTrue(is_eager_only(make_slot(9001, names=(EAGER, EAGER)), EAGER))


if __name__ == "__main__":
    unittest.main()
