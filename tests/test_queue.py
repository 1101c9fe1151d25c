import os
import tempfile
import threading
import unittest
from datetime import timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from catalog.db.models import Base, JobRecord
from catalog.errors import JobNotFound, JobStateError, JobValidationError
from catalog.jobs.models import Job, JobPriority, JobStatus, utcnow
from catalog.jobs.queue import DatabaseQueue


def memory_session_factory():
    engine = create_engine(
        "sqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


class DatabaseQueueTests(unittest.TestCase):
    def setUp(self):
        self.Session = memory_session_factory()
        self.queue = DatabaseQueue(self.Session)

    def test_enqueue_fills_defaults(self):
        job = self.queue.enqueue(Job.new("scrape_products", {"url": "https://example.com"}))

        self.assertEqual(job.status, JobStatus.PENDING)
        self.assertEqual(job.priority, JobPriority.NORMAL)
        self.assertEqual(job.max_attempts, 3)
        self.assertEqual(job.attempts, 0)
        self.assertIsNotNone(job.scheduled_at)
        self.assertIsNotNone(job.created_at)

        stored = self.queue.get_job(job.id)
        self.assertEqual(stored.payload, {"url": "https://example.com"})
        self.assertEqual(stored.status, JobStatus.PENDING)

    def test_enqueue_rejects_missing_id_or_type(self):
        with self.assertRaises(JobValidationError):
            self.queue.enqueue(Job(id="", type="scrape_products"))
        with self.assertRaises(JobValidationError):
            self.queue.enqueue(Job(id="abc", type=""))
        with self.Session() as session:
            self.assertEqual(session.query(JobRecord).count(), 0)

    def test_enqueue_rejects_attempts_beyond_max(self):
        job = Job.new("scrape_products", max_attempts=2)
        job.attempts = 3
        with self.assertRaises(JobValidationError):
            self.queue.enqueue(job)
        with self.Session() as session:
            self.assertEqual(session.query(JobRecord).count(), 0)

    def test_claim_marks_running_and_counts_attempt(self):
        job = self.queue.enqueue(Job.new("scrape_products"))

        claimed = self.queue.claim_next()

        self.assertEqual(claimed.id, job.id)
        self.assertEqual(claimed.status, JobStatus.RUNNING)
        self.assertEqual(claimed.attempts, 1)
        self.assertIsNotNone(claimed.started_at)
        self.assertIsNone(self.queue.claim_next())

    def test_claim_prefers_priority_then_schedule(self):
        now = utcnow()
        old_low = self.queue.enqueue(
            Job.new("scrape_products", priority=JobPriority.LOW, scheduled_at=now - timedelta(hours=1))
        )
        later_normal = self.queue.enqueue(
            Job.new("scrape_products", scheduled_at=now - timedelta(minutes=1))
        )
        earlier_normal = self.queue.enqueue(
            Job.new("scrape_products", scheduled_at=now - timedelta(minutes=5))
        )
        urgent = self.queue.enqueue(Job.new("scrape_products", priority=JobPriority.URGENT))

        order = [self.queue.claim_next().id for _ in range(4)]

        self.assertEqual(order, [urgent.id, earlier_normal.id, later_normal.id, old_low.id])

    def test_future_job_is_not_claimed_early(self):
        self.queue.enqueue(Job.new("scrape_products", scheduled_at=utcnow() + timedelta(minutes=10)))
        self.assertIsNone(self.queue.claim_next())

    def test_exhausted_job_is_not_claimed(self):
        job = self.queue.enqueue(Job.new("scrape_products", max_attempts=1))
        claimed = self.queue.claim_next()
        claimed.status = JobStatus.PENDING
        self.queue.update_job(claimed)

        self.assertIsNone(self.queue.claim_next())
        self.assertEqual(self.queue.get_job(job.id).attempts, 1)

    def test_update_unknown_job_raises(self):
        with self.assertRaises(JobNotFound):
            self.queue.update_job(Job(id="missing", type="scrape_products", status=JobStatus.RUNNING))

    def test_update_round_trip_keeps_result(self):
        self.queue.enqueue(Job.new("scrape_products"))
        job = self.queue.claim_next()
        job.status = JobStatus.COMPLETED
        job.completed_at = utcnow()
        job.result = {"products_created": 2}
        self.queue.update_job(job)

        stored = self.queue.get_job(job.id)
        self.assertEqual(stored.status, JobStatus.COMPLETED)
        self.assertEqual(stored.result, {"products_created": 2})
        self.assertIsNotNone(stored.completed_at)

    def test_list_jobs_filters_by_status(self):
        a = self.queue.enqueue(Job.new("scrape_products"))
        self.queue.enqueue(Job.new("scrape_products"))
        self.queue.cancel_job(a.id)

        cancelled = self.queue.list_jobs(status=JobStatus.CANCELLED)
        self.assertEqual([j.id for j in cancelled], [a.id])
        self.assertEqual(len(self.queue.list_jobs()), 2)
        self.assertEqual(len(self.queue.list_jobs(status="pending")), 1)

    def test_delete_job(self):
        job = self.queue.enqueue(Job.new("scrape_products"))
        self.assertTrue(self.queue.delete_job(job.id))
        self.assertFalse(self.queue.delete_job(job.id))
        self.assertIsNone(self.queue.get_job(job.id))

    def test_cancel_pending_job_is_never_claimed(self):
        job = self.queue.enqueue(Job.new("scrape_products"))

        cancelled = self.queue.cancel_job(job.id)

        self.assertEqual(cancelled.status, JobStatus.CANCELLED)
        self.assertIsNotNone(cancelled.completed_at)
        self.assertIsNone(self.queue.claim_next())

    def test_cancel_running_job_is_rejected(self):
        self.queue.enqueue(Job.new("scrape_products"))
        running = self.queue.claim_next()

        with self.assertRaises(JobStateError):
            self.queue.cancel_job(running.id)
        self.assertEqual(self.queue.get_job(running.id).status, JobStatus.RUNNING)

    def test_cancel_unknown_job(self):
        with self.assertRaises(JobNotFound):
            self.queue.cancel_job("nope")


class ConcurrentClaimTests(unittest.TestCase):
    def setUp(self):
        fd, self.path = tempfile.mkstemp(suffix=".db")
        os.close(fd)
        self.engine = create_engine(
            f"sqlite:///{self.path}",
            future=True,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        Base.metadata.create_all(self.engine)
        self.queue = DatabaseQueue(sessionmaker(bind=self.engine, expire_on_commit=False))

    def tearDown(self):
        self.engine.dispose()
        os.remove(self.path)

    def test_concurrent_claimers_get_distinct_jobs(self):
        claimers = 4
        for _ in range(claimers + 2):
            self.queue.enqueue(Job.new("scrape_products"))

        barrier = threading.Barrier(claimers)
        claimed: list[str] = []
        lock = threading.Lock()
        failures: list[BaseException] = []

        def claim():
            try:
                barrier.wait()
                job = self.queue.claim_next()
                with lock:
                    claimed.append(job.id if job else None)
            except BaseException as exc:  # surfaced below
                failures.append(exc)

        threads = [threading.Thread(target=claim) for _ in range(claimers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(30)

        self.assertEqual(failures, [])
        self.assertEqual(len(claimed), claimers)
        self.assertNotIn(None, claimed)
        self.assertEqual(len(set(claimed)), claimers)
        self.assertEqual(len(self.queue.list_jobs(status=JobStatus.PENDING)), 2)


if __name__ == "__main__":
    unittest.main()
