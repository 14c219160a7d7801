"""Redis backends (queue, result store, cache) against an in-process fake Redis server."""
import fakeredis
import pytest

from briefings.guardrails.errors import QueueUnavailable, StoreUnavailable
from briefings.jobs.queue import STALLED_ERROR, JobQueue, RedisQueueBackend
from briefings.models.schemas import BriefingUpdate, CompanyInfo
from briefings.store.cache import CacheLayer, RedisCacheBackend
from briefings.store.results import RedisResultStore
from briefings.utils.retry import RetryPolicy


@pytest.fixture
def server():
    return fakeredis.FakeServer()


@pytest.fixture
def client(server):
    return fakeredis.FakeRedis(server=server, decode_responses=True)


@pytest.fixture
def queue(client, clock):
    return JobQueue(RedisQueueBackend(client, "test"), stall_timeout=600, clock=clock)


# -------------------------
# Queue
# -------------------------

def test_retry_cycle_until_failed(queue, clock):
    job_id = queue.submit("u1", "m1")
    delays = []
    while True:
        qjob = queue.claim()
        assert qjob is not None and qjob.state == "active"
        delay = queue.fail(qjob, "timeout")
        if delay is None:
            break
        delays.append(delay)
        assert queue.claim() is None  # still backing off
        clock.advance(delay)

    assert delays == [2.0, 4.0, 8.0, 16.0]
    stored = queue.get(job_id)
    assert (stored.state, stored.attempts_made, stored.last_error) == ("failed", 5, "timeout")
    assert queue.counts() == {"waiting": 0, "delayed": 0, "active": 0, "completed": 0, "failed": 1}
    assert queue.clear_failed() == 1
    assert queue.get(job_id) is None


def test_live_job_absorbs_and_finished_job_rearms(queue, clock):
    job_id = queue.submit("u1", "m1")
    assert queue.submit("u1", "m1") == job_id
    assert queue.counts()["waiting"] == 1

    qjob = queue.claim()
    assert queue.submit("u1", "m1") == job_id
    assert queue.get(job_id).state == "active"

    queue.complete(qjob)
    clock.advance(1)
    queue.submit("u1", "m1")
    stored = queue.get(job_id)
    assert (stored.state, stored.attempts_made) == ("waiting", 0)
    assert queue.counts()["completed"] == 0


def test_on_created_runs_only_for_new_jobs(queue):
    calls = []
    queue.enqueue(queue.build_job("u1", "m1"), on_created=lambda: calls.append("first"))
    queue.enqueue(queue.build_job("u1", "m1"), on_created=lambda: calls.append("second"))
    assert calls == ["first"]


def test_failing_on_created_leaves_nothing_claimable(queue):
    def boom():
        raise StoreUnavailable("store down")

    with pytest.raises(StoreUnavailable):
        queue.enqueue(queue.build_job("u1", "m1"), on_created=boom)
    assert queue.get("u1:m1:briefing") is None
    assert queue.claim() is None


def test_completed_jobs_pruned_by_count(client, clock):
    queue = JobQueue(RedisQueueBackend(client, "test"), keep_completed=2, clock=clock)
    for m in ("m1", "m2", "m3"):
        queue.submit("u1", m)
        queue.complete(queue.claim())
        clock.advance(1)

    assert queue.counts()["completed"] == 2
    assert queue.get("u1:m1:briefing") is None
    assert queue.get("u1:m3:briefing").state == "completed"


def test_stalled_job_recovered_after_worker_loss(client, clock):
    first = JobQueue(RedisQueueBackend(client, "test"), stall_timeout=600, clock=clock)
    job_id = first.submit("u1", "m1")
    assert first.claim() is not None  # the worker holding this claim never reports back

    restarted = JobQueue(RedisQueueBackend(client, "test"), stall_timeout=600, clock=clock)
    assert restarted.recover_stalled() == []
    clock.advance(601)
    recovered = restarted.recover_stalled()

    assert [q.job_id for q in recovered] == [job_id]
    assert restarted.counts()["active"] == 0
    qjob = restarted.claim()
    assert (qjob.job_id, qjob.attempts_made, qjob.last_error) == (job_id, 2, STALLED_ERROR)


def test_resubmit_rearms_stalled_job(queue, clock):
    job_id = queue.submit("u1", "m1")
    queue.claim()
    clock.advance(24 * 3600)

    assert queue.submit("u1", "m1") == job_id
    stored = queue.get(job_id)
    assert (stored.state, stored.attempts_made) == ("waiting", 0)
    assert queue.counts()["active"] == 0
    assert queue.claim().job_id == job_id


def test_stalled_job_out_of_attempts_fails(client, clock):
    queue = JobQueue(RedisQueueBackend(client, "test"), RetryPolicy(attempts=1), stall_timeout=60, clock=clock)
    job_id = queue.submit("u1", "m1")
    queue.claim()
    clock.advance(61)

    [qjob] = queue.recover_stalled()
    assert qjob.state == "failed"
    assert queue.get(job_id).last_error == STALLED_ERROR
    assert queue.counts()["failed"] == 1


def test_disconnected_server_raises_queue_unavailable(server, queue):
    server.connected = False
    with pytest.raises(QueueUnavailable):
        queue.submit("u1", "m1")
    with pytest.raises(QueueUnavailable):
        queue.claim()
    with pytest.raises(QueueUnavailable):
        queue.counts()


# -------------------------
# Result store
# -------------------------

def test_result_store_merges_fields(client):
    store = RedisResultStore(client)
    store.upsert("u1", "m1", {"status": "processing", "jobId": "u1:m1:briefing"})
    store.upsert("u1", "m1", BriefingUpdate(company=CompanyInfo(domain="acme.com", name="Acme")))
    store.upsert("u1", "m1", {"status": "failed", "error": "boom"})

    record = store.get("u1", "m1")
    assert record.company.domain == "acme.com"
    assert record.job_id == "u1:m1:briefing"
    assert (record.status, record.error) == ("failed", "boom")
    assert record.last_generated_at is not None

    store.upsert("u1", "m1", {"status": "processing"})
    record = store.get("u1", "m1")
    assert record.error is None
    assert record.company.name == "Acme"


def test_result_store_outage_is_store_unavailable(server, client):
    store = RedisResultStore(client)
    server.connected = False
    with pytest.raises(StoreUnavailable):
        store.upsert("u1", "m1", {"status": "processing"})
    with pytest.raises(StoreUnavailable):
        store.get("u1", "m1")


# -------------------------
# Cache
# -------------------------

def test_cache_set_get_and_pattern_delete(client, clock):
    cache = CacheLayer(RedisCacheBackend(client), clock=clock)
    cache.set("meetings:u1:a", [1])
    cache.set("meetings:u1:b", [2])
    cache.set("meetings:u2:a", [3])

    assert cache.get("meetings:u1:a") == [1]
    assert cache.get_entry("meetings:u1:a").stored_at == clock.now
    assert client.ttl("meetings:u1:a") == 900

    cache.delete_pattern("meetings:u1:*")
    assert cache.get("meetings:u1:b") is None
    assert cache.get("meetings:u2:a") == [3]


def test_cache_outage_reads_as_miss(server, client):
    cache = CacheLayer(RedisCacheBackend(client))
    server.connected = False
    cache.set("k", 1)
    assert cache.get("k") is None
