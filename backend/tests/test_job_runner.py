from __future__ import annotations

import asyncio
import sys
import unittest
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from batch_errors import JobQueueFullError  # noqa: E402
from job_runner import JobRunner  # noqa: E402


class JobRunnerTests(unittest.TestCase):
    def test_jobs_are_handled_in_submission_order(self):
        handled: list[str] = []

        async def handler(job_id: str) -> None:
            await asyncio.sleep(0)
            handled.append(job_id)

        async def scenario():
            runner = JobRunner(handler, workers=1, queue_size=10)
            await runner.start()
            for job_id in ("a", "b", "c"):
                runner.submit(job_id)
            await asyncio.wait_for(runner.join(), timeout=5)
            await runner.stop()
            return runner

        runner = asyncio.run(scenario())
        self.assertEqual(handled, ["a", "b", "c"])
        self.assertFalse(runner.running)

    def test_handler_failure_does_not_stop_the_worker(self):
        handled: list[str] = []

        async def handler(job_id: str) -> None:
            if job_id == "boom":
                raise RuntimeError("handler failed")
            handled.append(job_id)

        async def scenario():
            runner = JobRunner(handler, workers=1, queue_size=10)
            await runner.start()
            runner.submit("boom")
            runner.submit("ok")
            await asyncio.wait_for(runner.join(), timeout=5)
            await runner.stop()

        with self.assertLogs("job_runner", level="ERROR"):
            asyncio.run(scenario())
        self.assertEqual(handled, ["ok"])

    def test_full_queue_rejects_submission(self):
        async def handler(job_id: str) -> None:
            return None

        async def scenario():
            runner = JobRunner(handler, workers=1, queue_size=1)
            runner.submit("first")
            with self.assertRaises(JobQueueFullError):
                runner.submit("second")
            self.assertEqual(runner.pending, 1)

        asyncio.run(scenario())

    def test_ensure_capacity_raises_only_when_full(self):
        async def handler(job_id: str) -> None:
            return None

        async def scenario():
            runner = JobRunner(handler, workers=1, queue_size=1)
            runner.ensure_capacity()
            runner.submit("first")
            self.assertTrue(runner.full())
            with self.assertRaises(JobQueueFullError):
                runner.ensure_capacity()

        asyncio.run(scenario())

    def test_start_requires_handler(self):
        async def scenario():
            await JobRunner(None).start()

        with self.assertRaises(RuntimeError):
            asyncio.run(scenario())


if __name__ == "__main__":
    unittest.main()
