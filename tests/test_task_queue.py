from __future__ import annotations

import asyncio
import time
import unittest

from trading.task_queue import TaskQueue, TaskQueueDelayed


class TaskQueueTests(unittest.TestCase):
    def test_tasks_run_in_enqueue_order_without_overlap(self) -> None:
        async def _run() -> tuple[list[str], int]:
            queue = TaskQueue("unit")
            events: list[str] = []
            active = 0
            max_active = 0

            def _task(idx: int):  # type: ignore[no-untyped-def]
                async def _body() -> None:
                    nonlocal active, max_active
                    active += 1
                    max_active = max(max_active, active)
                    events.append(f"start-{idx}")
                    await asyncio.sleep(0.01 * (5 - idx))
                    events.append(f"end-{idx}")
                    active -= 1

                return _body

            for idx in range(5):
                queue.enqueue(_task(idx))
            await queue.join()
            return events, max_active

        events, max_active = asyncio.run(_run())
        self.assertEqual(max_active, 1)
        expected: list[str] = []
        for idx in range(5):
            expected.extend([f"start-{idx}", f"end-{idx}"])
        self.assertEqual(events, expected)

    def test_failing_task_does_not_stop_the_queue(self) -> None:
        async def _run() -> tuple[list[int], TaskQueue]:
            queue = TaskQueue("unit")
            done: list[int] = []

            async def _ok_1() -> None:
                done.append(1)

            async def _boom() -> None:
                raise RuntimeError("task exploded")

            async def _ok_3() -> None:
                done.append(3)

            queue.enqueue(_ok_1)
            queue.enqueue(_boom)
            queue.enqueue(_ok_3)
            with self.assertLogs("trading.task_queue", level="ERROR") as logs:
                await queue.join()
            self.assertTrue(any("TASK_QUEUE_FAIL" in line for line in logs.output))
            return done, queue

        done, queue = asyncio.run(_run())
        self.assertEqual(done, [1, 3])
        self.assertEqual(queue.completed, 2)
        self.assertEqual(queue.failed, 1)
        self.assertEqual(queue.pending_count, 0)
        self.assertFalse(queue.is_processing)

    def test_enqueue_while_draining_is_picked_up_by_same_worker(self) -> None:
        async def _run() -> list[str]:
            queue = TaskQueue("unit")
            order: list[str] = []

            async def _second() -> None:
                order.append("second")

            async def _first() -> None:
                order.append("first")
                queue.enqueue(_second)
                await asyncio.sleep(0)

            queue.enqueue(_first)
            self.assertTrue(queue.is_processing)
            await queue.join()
            return order

        self.assertEqual(asyncio.run(_run()), ["first", "second"])

    def test_join_on_empty_queue_returns_immediately(self) -> None:
        async def _run() -> None:
            queue = TaskQueue("unit")
            await asyncio.wait_for(queue.join(), timeout=1.0)

        asyncio.run(_run())


class TaskQueueDelayedTests(unittest.TestCase):
    def test_waits_before_every_task(self) -> None:
        async def _run() -> list[float]:
            queue = TaskQueueDelayed("unit-delayed", delay_seconds=0.05)
            stamps: list[float] = []
            started = time.monotonic()

            async def _stamp() -> None:
                stamps.append(time.monotonic() - started)

            queue.enqueue(_stamp)
            queue.enqueue(_stamp)
            await queue.join()
            return stamps

        stamps = asyncio.run(_run())
        self.assertEqual(len(stamps), 2)
        self.assertGreaterEqual(stamps[0], 0.045)
        self.assertGreaterEqual(stamps[1] - stamps[0], 0.045)

    def test_negative_delay_is_clamped(self) -> None:
        queue = TaskQueueDelayed("unit-delayed", delay_seconds=-3)
        self.assertEqual(queue.delay_seconds, 0.0)


if __name__ == "__main__":
    unittest.main()
