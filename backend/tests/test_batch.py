from datetime import timedelta

import pytest
from sqlalchemy import func, select

from app.core.errors import InvalidRequestError, LimitExceededError, NotFoundError
from app.db.models import BatchMatchItem, BatchMatchRequest, utcnow
from app.services.batch import orchestrator as orchestrator_module
from app.services.batch.orchestrator import ABORTED_MESSAGE, ITEM_ERROR_MESSAGE, BatchOrchestrator
from app.services.batch.schemas import BatchItemIn, as_utc
from app.services.batch.status import BatchStatus, ItemStatus
from app.services.territoires.matching import TerritoireMatcher
from app.services.territoires.types import MatchHints


def _items(*queries):
    return [BatchItemIn(query=q) for q in queries]


class TestSubmit:
    def test_missing_items(self, orchestrator):
        with pytest.raises(InvalidRequestError, match="Items array is required"):
            orchestrator.submit(None)

    def test_empty_items(self, orchestrator):
        with pytest.raises(InvalidRequestError, match="Items array cannot be empty"):
            orchestrator.submit([])

    def test_too_many_items(self, orchestrator, db):
        with pytest.raises(LimitExceededError, match="Maximum 1000 items per batch"):
            orchestrator.submit(_items(*["Lyon"] * 1001))
        # nada persistido
        assert db.execute(select(func.count(BatchMatchRequest.id))).scalar_one() == 0

    def test_blank_query_rejected(self, orchestrator):
        with pytest.raises(InvalidRequestError, match="Item 1"):
            orchestrator.submit(_items("Lyon", "   "))

    def test_submit_response(self, orchestrator):
        resp = orchestrator.submit(_items("Lyon", "Paris"), base_url="http://api/api/v1/territoires/")
        assert resp.status == BatchStatus.PENDING
        assert resp.total_items == 2
        assert resp.estimated_duration == 1
        assert resp.status_url == f"http://api/api/v1/territoires/batch/{resp.request_id}"
        assert resp.results_url.endswith(f"/batch/{resp.request_id}/results")

    def test_long_query_truncated(self, orchestrator, db):
        resp = orchestrator.submit(_items("  " + "a" * 300 + "  "))
        item = db.execute(
            select(BatchMatchItem).where(BatchMatchItem.request_id == resp.request_id)
        ).scalar_one()
        assert len(item.query) <= 200
        assert item.status == ItemStatus.PENDING

    def test_per_client_quota(self, session_factory):
        orch = BatchOrchestrator(session_factory, concurrency=1, max_active_per_client=1)
        orch.submit(_items("Lyon"), client_id="client-a")
        with pytest.raises(LimitExceededError):
            orch.submit(_items("Paris"), client_id="client-a")
        # otro cliente no se ve afectado
        orch.submit(_items("Paris"), client_id="client-b")


class TestProcess:
    def test_full_lifecycle(self, orchestrator):
        items = [
            BatchItemIn(query="Paris"),
            BatchItemIn(query="Lyon", hints=MatchHints(type="commune")),
            BatchItemIn(query="200046977"),
            BatchItemIn(query="Zzzyx"),
            BatchItemIn(query="Lyon", hints=MatchHints(type="commune")),
        ]
        resp = orchestrator.submit(items)

        assert orchestrator.process(resp.request_id) == BatchStatus.COMPLETED

        status = orchestrator.get_status(resp.request_id)
        assert status.status == BatchStatus.COMPLETED
        assert status.processed == status.total_items == 5
        assert status.processed == status.matched + status.suggestions + status.failed
        assert (status.matched, status.suggestions, status.failed) == (3, 1, 1)
        assert status.progress == 100
        assert status.started_at is not None
        assert status.completed_at is not None

        results = orchestrator.get_results(resp.request_id)
        assert [r.index for r in results.results] == [0, 1, 2, 3, 4]
        assert results.results[0].status == ItemStatus.SUGGESTIONS
        assert len(results.results[0].alternatives) >= 2
        assert results.results[1].code == "69123"
        assert results.results[4].code == "69123"
        assert results.results[2].match_source == "direct"
        assert results.results[3].error
        assert results.summary.total == 5
        assert results.summary.success_rate == 60

    def test_terminal_job_not_reprocessed(self, orchestrator):
        resp = orchestrator.submit(_items("Lyon"))
        assert orchestrator.process(resp.request_id) == BatchStatus.COMPLETED
        assert orchestrator.process(resp.request_id) is None
        assert orchestrator.get_status(resp.request_id).processed == 1

    def test_claim_is_exclusive(self, orchestrator):
        resp = orchestrator.submit(_items("Lyon"))
        assert orchestrator.claim(resp.request_id) is True
        assert orchestrator.claim(resp.request_id) is False

    def test_stale_processing_job_reclaimed(self, orchestrator, db):
        resp = orchestrator.submit(_items("Lyon"))
        req = db.get(BatchMatchRequest, resp.request_id)
        req.status = BatchStatus.PROCESSING
        req.heartbeat_at = utcnow() - timedelta(hours=1)
        db.commit()

        assert orchestrator.process_pending() == 1
        assert orchestrator.get_status(resp.request_id).status == BatchStatus.COMPLETED

    def test_reclaim_keeps_original_start(self, orchestrator, db):
        resp = orchestrator.submit(_items("Lyon"))
        first_start = utcnow() - timedelta(hours=2)
        req = db.get(BatchMatchRequest, resp.request_id)
        req.status = BatchStatus.PROCESSING
        req.started_at = first_start
        req.heartbeat_at = utcnow() - timedelta(hours=1)
        db.commit()

        assert orchestrator.process(resp.request_id) == BatchStatus.COMPLETED
        status = orchestrator.get_status(resp.request_id)
        assert as_utc(status.started_at) < utcnow() - timedelta(minutes=90)
        assert as_utc(status.completed_at) > as_utc(status.started_at)

    def test_item_failure_does_not_abort_batch(self, orchestrator, monkeypatch):
        original = TerritoireMatcher.match

        def flaky(self, query, hints=None):
            if query == "boom":
                raise RuntimeError("storage hiccup")
            return original(self, query, hints)

        monkeypatch.setattr(TerritoireMatcher, "match", flaky)
        resp = orchestrator.submit(_items("Lyon", "boom", "200046977"))

        assert orchestrator.process(resp.request_id) == BatchStatus.COMPLETED
        results = orchestrator.get_results(resp.request_id)
        assert [r.status for r in results.results] == [
            ItemStatus.MATCHED, ItemStatus.FAILED, ItemStatus.MATCHED,
        ]
        assert results.results[1].error == ITEM_ERROR_MESSAGE

    def test_infrastructure_error_fails_batch(self, orchestrator, monkeypatch):
        def broken(self, request_id):
            raise RuntimeError("db gone")

        monkeypatch.setattr(BatchOrchestrator, "_pending_groups", broken)
        resp = orchestrator.submit(_items("Lyon", "Paris"))

        assert orchestrator.process(resp.request_id) == BatchStatus.FAILED
        status = orchestrator.get_status(resp.request_id)
        assert status.status == BatchStatus.FAILED
        assert status.processed == status.failed == 2
        results = orchestrator.get_results(resp.request_id)
        assert all(r.error == ABORTED_MESSAGE for r in results.results)

    def test_parallel_processing_keeps_counts(self, session_factory):
        orch = BatchOrchestrator(session_factory, concurrency=3)
        resp = orch.submit(_items("Lyon", "Paris", "Bordeaux", "Ajaccio", "Zzzyx", "75056"))

        assert orch.process(resp.request_id) == BatchStatus.COMPLETED
        status = orch.get_status(resp.request_id)
        assert status.processed == status.matched + status.suggestions + status.failed == 6
        assert [r.query for r in orch.get_results(resp.request_id).results] == [
            "Lyon", "Paris", "Bordeaux", "Ajaccio", "Zzzyx", "75056",
        ]

    def test_webhook_sent_on_completion(self, orchestrator, monkeypatch):
        calls = []
        monkeypatch.setattr(
            orchestrator_module, "send_webhook",
            lambda url, payload, timeout=10: calls.append((url, payload)),
        )
        resp = orchestrator.submit(_items("Lyon"), webhook_url="http://hooks.local/done")
        orchestrator.process(resp.request_id)

        assert len(calls) == 1
        url, payload = calls[0]
        assert url == "http://hooks.local/done"
        assert payload["requestId"] == resp.request_id
        assert payload["status"] == "completed"
        assert payload["summary"]["successRate"] == 100


class TestQueries:
    def test_results_while_pending(self, orchestrator):
        resp = orchestrator.submit(_items("Lyon"))
        results = orchestrator.get_results(resp.request_id)
        assert results.status == BatchStatus.PENDING
        assert results.results == []
        assert results.message
        assert results.retry_after == orchestrator.retry_after

    def test_zero_item_batch(self, orchestrator, db):
        req = BatchMatchRequest(total_items=0, expires_at=utcnow() + timedelta(hours=1))
        db.add(req)
        db.commit()

        assert orchestrator.get_status(req.id).progress == 0
        assert orchestrator.process(req.id) == BatchStatus.COMPLETED
        status = orchestrator.get_status(req.id)
        assert status.progress == 0
        assert orchestrator.get_results(req.id).summary.success_rate == 0

    def test_unknown_request(self, orchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.get_status("00000000-0000-0000-0000-000000000000")
        with pytest.raises(NotFoundError):
            orchestrator.get_results("00000000-0000-0000-0000-000000000000")


class TestCleanup:
    def test_cleanup_expired(self, orchestrator, db):
        old = orchestrator.submit(_items("Lyon", "Paris"))
        fresh = orchestrator.submit(_items("Lyon"))
        req = db.get(BatchMatchRequest, old.request_id)
        req.expires_at = utcnow() - timedelta(minutes=1)
        db.commit()

        assert orchestrator.cleanup_expired() == 1
        assert orchestrator.cleanup_expired() == 0

        db.expire_all()
        assert db.get(BatchMatchRequest, old.request_id) is None
        assert db.get(BatchMatchRequest, fresh.request_id) is not None
        remaining = db.execute(
            select(func.count(BatchMatchItem.id)).where(BatchMatchItem.request_id == old.request_id)
        ).scalar_one()
        assert remaining == 0

    def test_cleanup_with_nothing_to_do(self, orchestrator):
        assert orchestrator.cleanup_expired() == 0
