import pytest

from schemas.scan import ScanRequest
from services.async_scan_service import AsyncScanService
from services.job_queue import JobQueue
from tests.helpers import FakeGitHubAPI, wait_until
from utils.errors import RateLimitError

STRIPE_LIVE = 'sk_live_' + 'a' * 24


def _service(settings, store, fake):
    queue = JobQueue(store=store, settings=settings)
    return AsyncScanService(
        queue,
        store,
        settings=settings,
        github_factory=lambda token: fake.client(settings, token)
    )


def _request(**kwargs):
    return ScanRequest(owner='octo', repo='repo', **kwargs)


@pytest.mark.asyncio
async def test_exhausted_quota_is_refused_before_crawling(settings, store):
    fake = FakeGitHubAPI(files={'a.py': 'x = 1'}, remaining=0)
    service = _service(settings, store, fake)

    with pytest.raises(RateLimitError) as exc:
        await service.queue_scan(_request(), 'user-1')

    assert exc.value.reset_time is not None
    assert [r.url.path for r in fake.requests] == ['/rate_limit']
    assert service.queue.get_all_jobs() == []


@pytest.mark.asyncio
async def test_queued_scan_runs_to_completion(settings, store):
    fake = FakeGitHubAPI(files={'config.js': f'const key = "{STRIPE_LIVE}"\n', 'app.py': 'x = 1'})
    service = _service(settings, store, fake)

    job = await service.queue_scan(_request(), 'user-1')
    await wait_until(lambda: service.get_job_status(job.id).is_terminal)

    finished = service.get_job_status(job.id, 'user-1')
    assert finished.status == 'completed'
    assert finished.progress.current == finished.progress.total == 2

    result = await service.get_job_result(job.id, 'user-1')
    assert [f['service'] for f in result['results']] == ['stripe_secret']
    assert 'match' not in result['results'][0]
    assert result['stats']['keys_found'] == 1

    record = await store.get_job_record(job.id)
    assert record['status'] == 'completed'
    assert record['progress_current'] == 2
    assert len(await store.get_findings(job.id)) == 1


@pytest.mark.asyncio
async def test_stored_record_names_the_scanned_default_branch(settings, store):
    fake = FakeGitHubAPI(files={'a.py': 'x = 1'}, branch='develop', default_branch='develop')
    service = _service(settings, store, fake)

    job = await service.queue_scan(_request(), 'user-1')
    assert (await store.get_job_record(job.id))['branch'] is None

    await wait_until(lambda: service.get_job_status(job.id).is_terminal)
    assert (await store.get_job_record(job.id))['branch'] == 'develop'

    service.queue.jobs.pop(job.id)
    result = await service.get_job_result(job.id, 'user-1')
    assert result['repository']['branch'] == 'develop'


@pytest.mark.asyncio
async def test_crawl_failure_marks_job_failed(settings, store):
    fake = FakeGitHubAPI(files={'a.py': 'x = 1'}, branch='main')
    service = _service(settings, store, fake)

    job = await service.queue_scan(_request(branch='release'), 'user-1')
    await wait_until(lambda: service.get_job_status(job.id).is_terminal)

    failed = service.get_job_status(job.id)
    assert failed.status == 'failed'
    assert failed.error_code == 'not_found'
    assert service.get_queue_stats()['stats']['failed'] == 1


@pytest.mark.asyncio
async def test_results_fall_back_to_store(settings, store):
    fake = FakeGitHubAPI(files={'config.js': f'const key = "{STRIPE_LIVE}"\n'})
    service = _service(settings, store, fake)

    job = await service.queue_scan(_request(), 'user-1')
    await wait_until(lambda: service.get_job_status(job.id).is_terminal)
    service.queue.jobs.pop(job.id)

    result = await service.get_job_result(job.id, 'user-1')
    status = await service.get_job_status_record(job.id, 'user-1')

    assert result['status'] == 'completed'
    assert result['stats']['keys_found'] == 1
    assert len(result['results']) == 1
    assert status['repository'] == 'octo/repo'


@pytest.mark.asyncio
async def test_other_users_cannot_see_jobs(settings, store):
    fake = FakeGitHubAPI(files={'a.py': 'x = 1'})
    service = _service(settings, store, fake)

    job = await service.queue_scan(_request(), 'user-1')

    assert service.get_job_status(job.id, 'user-2') is None
    assert await service.get_job_result(job.id, 'user-2') is None
    assert not await service.delete_job(job.id, 'user-2')

    await wait_until(lambda: service.get_job_status(job.id).is_terminal)


@pytest.mark.asyncio
async def test_queue_stats_list_pending_and_running(settings, store):
    fake = FakeGitHubAPI(files={'a.py': 'x = 1'})
    queue = JobQueue(max_concurrent_jobs=1, store=store, settings=settings)
    service = AsyncScanService(queue, store, settings=settings,
                               github_factory=lambda token: fake.client(settings, token))

    first = await service.queue_scan(_request(), 'user-1')
    second = await service.queue_scan(_request(), 'user-1')
    snapshot = service.get_queue_stats()

    assert [j['id'] for j in snapshot['running_jobs']] == [first.id]
    assert [j['id'] for j in snapshot['pending_jobs']] == [second.id]
    assert snapshot['stats']['total'] == 2

    await wait_until(lambda: service.get_job_status(second.id).is_terminal)


@pytest.mark.asyncio
async def test_delete_finished_job(settings, store):
    fake = FakeGitHubAPI(files={'a.py': 'x = 1'})
    service = _service(settings, store, fake)

    job = await service.queue_scan(_request(), 'user-1')
    await wait_until(lambda: service.get_job_status(job.id).is_terminal)

    assert await service.delete_job(job.id, 'user-1')
    assert await service.get_job_result(job.id, 'user-1') is None


@pytest.mark.asyncio
async def test_request_token_reaches_github(settings, store):
    fake = FakeGitHubAPI(files={'a.py': 'x = 1'})
    service = _service(settings, store, fake)

    job = await service.queue_scan(_request(github_token='user-token'), 'user-1')
    await wait_until(lambda: service.get_job_status(job.id).is_terminal)

    assert {r.headers.get('Authorization') for r in fake.requests} == {'token user-token'}
