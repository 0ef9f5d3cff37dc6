import pytest

from assignment_sync.errors import NotConnectedError, ProviderUnavailableError, RateLimitedError
from sync.batch_runner import MAX_REPORTED_ERRORS

from conftest import USER_ID, make_assignment


def _seed(assignments, count):
    for i in range(1, count + 1):
        assignments.add(USER_ID, make_assignment(f"a-{i}"))


@pytest.mark.asyncio
async def test_partial_failure_keeps_going(service, assignments, fake_client, credential_store, sync_log):
    _seed(assignments, 3)
    fake_client.fail("insert", None, RateLimitedError(raw="Too Many Requests", status_code=429), None)

    result = await service.sync_all(USER_ID)

    assert result.synced == 2
    assert result.failed == 1
    assert result.errors == [f"Assignment a-2: {RateLimitedError.default_message}"]
    # the third assignment was still attempted
    assert len(fake_client.calls_to("insert")) == 3
    assert credential_store.last_sync_touched == [USER_ID]
    summary = sync_log.entries[-1]
    assert summary.action == "full_sync"
    assert summary.details == {"synced": 2, "failed": 1, "total": 3}


@pytest.mark.asyncio
async def test_already_synced_assignments_are_skipped(service, assignments, mapping_store, fake_client):
    _seed(assignments, 2)
    mapping_store.add(USER_ID, "a-1", "evt-existing")

    result = await service.sync_all(USER_ID)

    assert result.synced == 1
    assert len(fake_client.calls_to("insert")) == 1
    assert fake_client.calls_to("update") == []


@pytest.mark.asyncio
async def test_no_connection_short_circuits(service, assignments, fake_client, credential_store):
    _seed(assignments, 3)
    credential_store.credentials.clear()

    result = await service.sync_all(USER_ID)

    assert result.synced == 0
    assert result.failed == 3
    assert result.errors == [NotConnectedError.default_message]
    assert fake_client.calls == []
    assert credential_store.last_sync_touched == []


@pytest.mark.asyncio
async def test_nothing_to_sync(service, fake_client, sync_log):
    result = await service.sync_all(USER_ID)

    assert (result.synced, result.failed, result.errors) == (0, 0, [])
    assert fake_client.calls == []
    assert sync_log.entries == []


@pytest.mark.asyncio
async def test_reported_errors_are_capped(service, assignments, fake_client):
    _seed(assignments, MAX_REPORTED_ERRORS + 10)
    failure = ProviderUnavailableError(raw="Backend Error", status_code=503)
    fake_client.fail("insert", *([failure] * (MAX_REPORTED_ERRORS + 10)))

    result = await service.sync_all(USER_ID)

    assert result.failed == MAX_REPORTED_ERRORS + 10
    assert len(result.errors) == MAX_REPORTED_ERRORS


@pytest.mark.asyncio
async def test_selected_batch_reports_each_id(service, assignments, fake_client):
    _seed(assignments, 2)

    report = await service.sync_batch(USER_ID, ["a-1", "missing", "a-2"])

    assert report.synced == 2
    assert report.failed == 1
    assert [r.id for r in report.results] == ["a-1", "missing", "a-2"]
    assert report.results[1].error == "Assignment not found"
    assert report.results[0].event_id == "evt-1"


@pytest.mark.asyncio
async def test_selected_batch_size_limit(service):
    with pytest.raises(ValueError):
        await service.sync_batch(USER_ID, [f"a-{i}" for i in range(51)])
