"""
Tests for scheduled job registration and error containment
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from jobs.scheduler import POLL_JOB_ID, SWEEP_JOB_ID, DealScheduler

from conftest import FastSettings


class NoExpirySettings(FastSettings):
    PENDING_INTERACTION_TTL_SECONDS = 0


def _scheduler(settings=FastSettings):
    poller = MagicMock()
    poller.run_once = AsyncMock()
    registry = MagicMock()
    registry.sweep_expired = AsyncMock(return_value=[])
    registry.__len__.return_value = 0
    return DealScheduler(poller, registry, settings)


def test_jobs_registered():
    scheduler = _scheduler()
    scheduler.setup_jobs()

    job_ids = {job.id for job in scheduler.scheduler.get_jobs()}
    assert job_ids == {POLL_JOB_ID, SWEEP_JOB_ID}


def test_sweep_job_omitted_when_expiry_disabled():
    scheduler = _scheduler(NoExpirySettings)
    scheduler.setup_jobs()

    assert [job.id for job in scheduler.scheduler.get_jobs()] == [POLL_JOB_ID]


@pytest.mark.asyncio
async def test_poll_errors_do_not_escape():
    scheduler = _scheduler()
    scheduler.poller.run_once.side_effect = RuntimeError("rpc down")

    await scheduler.poll_deals()

    scheduler.poller.run_once.assert_awaited_once()


@pytest.mark.asyncio
async def test_sweep_uses_configured_ttl():
    scheduler = _scheduler()

    await scheduler.sweep_pending_interactions()

    scheduler.registry.sweep_expired.assert_awaited_once_with(FastSettings.PENDING_INTERACTION_TTL_SECONDS)
