"""Tests for the persistent delivery queue."""

import time

import pytest

from lead_lander.delivery import DeliveryQueue, JobState, job_key_for


@pytest.fixture
def queue(db):
    return DeliveryQueue(db, lease_seconds=60)


class TestAdmission:
    def test_enqueue_once_per_key(self, queue):
        """A job key is admitted once."""
        assert queue.enqueue("sub-1", "client-1")
        assert not queue.enqueue("sub-1", "client-1")
        assert queue.depth() == {"queued": 1, "active": 0, "abandoned": 0}

    def test_enqueue_ignored_while_active(self, queue):
        """Enqueueing an active job is a no-op."""
        queue.enqueue("sub-1", "client-1")
        job = queue.claim("w1")
        assert job.state == JobState.ACTIVE
        assert not queue.enqueue("sub-1", "client-1")
        assert queue.depth()["active"] == 1

    def test_abandoned_job_is_revived(self, queue):
        """Enqueueing an abandoned job brings it back."""
        queue.enqueue("sub-1", "client-1")
        job = queue.claim("w1")
        queue.reschedule(job, attempt_hint=4, delay_seconds=0)
        job = queue.claim("w1")
        queue.abandon(job, error="exhausted")
        assert queue.get("sub-1").state == JobState.ABANDONED

        assert queue.enqueue("sub-1", "client-1")
        revived = queue.get("sub-1")
        assert revived.state == JobState.QUEUED
        assert revived.attempt_hint == 1
        assert revived.last_error is None

    def test_job_key(self):
        """Job keys are derived from the submission id."""
        assert job_key_for("abc") == "create-abc"


class TestClaiming:
    def test_claim_empty_queue(self, queue):
        """Claiming from an empty queue returns None."""
        assert queue.claim() is None

    def test_claim_leases_job_to_one_worker(self, queue):
        """A leased job cannot be claimed twice."""
        queue.enqueue("sub-1", "client-1")
        first = queue.claim("w1")
        assert first.lease_owner == "w1"
        assert first.envelope == {"submissionId": "sub-1", "attemptHint": 1}
        assert queue.claim("w2") is None

    def test_delayed_job_not_claimable_yet(self, queue):
        """Jobs are not claimable before their run time."""
        queue.enqueue("sub-1", "client-1", delay_seconds=60)
        assert queue.claim() is None

    def test_expired_lease_is_reclaimed(self, db):
        """A job whose lease expired can be claimed again."""
        queue = DeliveryQueue(db, lease_seconds=0)
        queue.enqueue("sub-1", "client-1")
        stale = queue.claim("dead-worker")
        time.sleep(0.01)

        job = queue.claim("w2")
        assert job.submission_id == "sub-1"
        assert job.lease_owner == "w2"
        # The original worker no longer holds the lease.
        assert not queue.complete(stale)
        assert queue.complete(job)
        assert queue.get("sub-1") is None

    def test_oldest_ready_first(self, queue):
        """The oldest ready job is claimed first."""
        queue.enqueue("sub-1", "client-1")
        time.sleep(0.01)
        queue.enqueue("sub-2", "client-1")
        assert queue.claim().submission_id == "sub-1"
        assert queue.claim().submission_id == "sub-2"


class TestDeadLetter:
    def test_list_abandoned_by_client(self, queue):
        """Abandoned jobs are listed per client."""
        for sid, client in [("a", "client-1"), ("b", "client-2")]:
            queue.enqueue(sid, client)
            queue.abandon(queue.claim(), error="bad request")

        assert [j.submission_id for j in queue.list_abandoned("client-1")] == ["a"]
        assert len(queue.list_abandoned()) == 2
