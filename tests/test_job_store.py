"""Tests for the database-backed job store"""

import asyncio
from datetime import timedelta

import pytest

from lms_jobs.jobs.models import utcnow
from lms_jobs.jobs.types import JobStatus, TerminalReason


@pytest.mark.asyncio
async def test_claim_order_priority_then_fifo(store, make_job):
    """Higher priority first, oldest first within a priority."""
    low_old = await store.add(make_job(priority=1, age_seconds=30))
    high_new = await store.add(make_job(priority=9, age_seconds=1))
    mid_old = await store.add(make_job(priority=5, age_seconds=20))
    mid_new = await store.add(make_job(priority=5, age_seconds=10))

    claimed = []
    while (job := await store.claim_next()) is not None:
        claimed.append(job.id)

    assert claimed == [high_new.id, mid_old.id, mid_new.id, low_old.id]


@pytest.mark.asyncio
async def test_claim_marks_processing(store, make_job):
    added = await store.add(make_job())

    job = await store.claim_next()
    assert job.id == added.id
    assert job.status == JobStatus.PROCESSING.value
    assert job.started_at is not None


@pytest.mark.asyncio
async def test_claim_skips_future_jobs(store, make_job):
    await store.add(make_job(scheduled_in_seconds=3600))

    assert await store.claim_next() is None
    assert await store.claim_next(now=utcnow() + timedelta(hours=2)) is not None


@pytest.mark.asyncio
async def test_claim_takes_retrying_jobs(store, make_job):
    added = await store.add(make_job(status=JobStatus.RETRYING, retry_count=1))

    job = await store.claim_next()
    assert job.id == added.id


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status",
    [JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.ABANDONED, JobStatus.PROCESSING],
)
async def test_non_claimable_jobs_are_never_claimed(store, make_job, status):
    await store.add(make_job(status=status, age_seconds=60, priority=10))

    assert await store.claim_next() is None


@pytest.mark.asyncio
async def test_concurrent_claims_never_share_a_job(store, make_job):
    for i in range(5):
        await store.add(make_job(age_seconds=i))

    results = await asyncio.gather(*(store.claim_next() for _ in range(8)))
    claimed = [job.id for job in results if job is not None]

    assert len(claimed) == 5
    assert len(set(claimed)) == 5


@pytest.mark.asyncio
async def test_transition_is_conditional(store, make_job):
    job = await store.add(make_job(status=JobStatus.COMPLETED))

    result = await store.transition(
        job.id, JobStatus.PENDING, from_statuses=[JobStatus.FAILED]
    )
    assert result is None
    assert (await store.get(job.id)).status == JobStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_record_success_appends_attempt(store, make_job):
    await store.add(make_job())
    claimed = await store.claim_next()

    job = await store.record_success(claimed.id, {"email_sent": True})

    assert job.status == JobStatus.COMPLETED.value
    assert job.result == {"email_sent": True}
    assert job.completed_at is not None
    assert [a.success for a in job.attempts] == [True]
    assert job.attempts[0].duration_ms >= 0


@pytest.mark.asyncio
async def test_record_success_requires_processing(store, make_job):
    job = await store.add(make_job())

    assert await store.record_success(job.id, {}) is None
    assert (await store.get(job.id)).attempts == []


@pytest.mark.asyncio
async def test_record_failure_with_budget_moves_to_retrying(store, make_job):
    await store.add(make_job(max_retries=2))
    claimed = await store.claim_next()

    job = await store.record_failure(claimed.id, "smtp down", "EMAIL_SEND_FAILED", True)

    assert job.status == JobStatus.RETRYING.value
    assert job.retry_count == 1
    assert job.error == "smtp down"
    assert job.error_code == "EMAIL_SEND_FAILED"
    assert job.terminal_reason is None
    assert job.completed_at is None
    assert [a.success for a in job.attempts] == [False]
    assert job.attempts[0].error == "smtp down"


@pytest.mark.asyncio
async def test_record_failure_exhausted_keeps_retry_count(store, make_job):
    await store.add(make_job(retry_count=2, max_retries=2))
    claimed = await store.claim_next()

    job = await store.record_failure(claimed.id, "still down", None, True)

    assert job.status == JobStatus.FAILED.value
    assert job.retry_count == 2
    assert job.terminal_reason == TerminalReason.RETRIES_EXHAUSTED.value
    assert job.completed_at is not None


@pytest.mark.asyncio
async def test_record_failure_non_retryable(store, make_job):
    await store.add(make_job(max_retries=5))
    claimed = await store.claim_next()

    job = await store.record_failure(claimed.id, "bad payload", "VALIDATION_ERROR", False)

    assert job.status == JobStatus.FAILED.value
    assert job.retry_count == 0
    assert job.terminal_reason == TerminalReason.NON_RETRYABLE.value


@pytest.mark.asyncio
async def test_record_failure_applies_retry_schedule(store, make_job):
    await store.add(make_job())
    claimed = await store.claim_next()
    later = utcnow() + timedelta(minutes=10)

    await store.record_failure(claimed.id, "later", None, True, retry_scheduled_for=later)

    assert await store.claim_next() is None
    assert await store.claim_next(now=later + timedelta(seconds=1)) is not None


@pytest.mark.asyncio
async def test_count_by_status(store, make_job):
    await store.add(make_job())
    await store.add(make_job())
    await store.add(make_job(status=JobStatus.FAILED))

    assert await store.count_by_status() == {"PENDING": 2, "FAILED": 1}


@pytest.mark.asyncio
async def test_list_by_status_orders(store, make_job):
    old = await store.add(make_job(priority=1, age_seconds=20))
    new = await store.add(make_job(priority=9, age_seconds=10))

    newest_first = await store.list_by_status([JobStatus.PENDING])
    assert [job.id for job in newest_first] == [new.id, old.id]

    claim_order = await store.list_by_status([JobStatus.PENDING], oldest_first=True)
    assert [job.id for job in claim_order] == [new.id, old.id]

    limited = await store.list_by_status([JobStatus.PENDING], limit=1)
    assert len(limited) == 1


@pytest.mark.asyncio
async def test_delete_completed_before_only_touches_completed(store, make_job):
    await store.add(make_job())
    done = await store.claim_next()
    await store.record_success(done.id, {})
    failed = await store.add(make_job(status=JobStatus.FAILED))
    pending = await store.add(make_job())

    deleted = await store.delete_completed_before(utcnow() + timedelta(seconds=1))

    assert deleted == 1
    assert await store.get(done.id) is None
    assert await store.get(failed.id) is not None
    assert await store.get(pending.id) is not None
