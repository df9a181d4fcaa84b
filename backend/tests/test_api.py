import uuid

from fastapi.testclient import TestClient

from app.main import create_app
from app.services.cache import MemoryCache

PREFIX = "/api/v1/territoires"


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


class TestMatch:
    def test_match_with_hint(self, client):
        resp = client.post(f"{PREFIX}/match", json={"query": "Lyon", "hints": {"type": "commune"}})
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "matched"
        assert body["code"] == "69123"
        assert body["matchSource"] == "database"
        assert body["confidence"] == 1.0

    def test_match_direct_code(self, client):
        body = client.post(f"{PREFIX}/match", json={"query": "200046977"}).json()
        assert body["matchSource"] == "direct"
        assert body["type"] == "epci_metropole"

    def test_match_suggestions(self, client):
        body = client.post(f"{PREFIX}/match", json={"query": "Paris"}).json()
        assert body["status"] == "suggestions"
        assert len(body["alternatives"]) >= 2
        assert "departement" in body["alternatives"][0]

    def test_match_empty_query_is_not_an_error(self, client):
        resp = client.post(f"{PREFIX}/match", json={"query": ""})
        assert resp.status_code == 200
        assert resp.json() == {"status": "failed", "message": "Query is required"}

    def test_invalid_hint_rejected(self, client):
        resp = client.post(f"{PREFIX}/match", json={"query": "Lyon", "hints": {"departement": "abc"}})
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "INVALID_REQUEST"
        assert error["details"]["errors"]

    def test_unknown_hint_rejected(self, client):
        resp = client.post(f"{PREFIX}/match", json={"query": "Lyon", "hints": {"canton": "12"}})
        assert resp.status_code == 400

    def test_rate_limited(self, engine, session_factory, test_settings):
        test_settings.rate_limit_requests = 2
        app = create_app(
            settings=test_settings,
            engine=engine,
            session_factory=session_factory,
            cache=MemoryCache(),
            start_background=False,
        )
        with TestClient(app) as c:
            headers = {"X-Client-Id": "greedy"}
            for _ in range(2):
                assert c.post(f"{PREFIX}/match", json={"query": "Lyon"}, headers=headers).status_code == 200
            resp = c.post(f"{PREFIX}/match", json={"query": "Lyon"}, headers=headers)
            assert resp.status_code == 429
            assert resp.json()["error"]["code"] == "LIMIT_EXCEEDED"
            assert int(resp.headers["Retry-After"]) >= 1


class TestAlias:
    def test_suggest_alias(self, client):
        resp = client.post(
            f"{PREFIX}/alias/suggest",
            json={"alias": "Lyon Métropole", "codeOfficiel": "200046977", "comment": "usage courant"},
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "created"
        assert body["alias"] == "Lyon Métropole"
        assert body["targetTerritoire"]["code"] == "200046977"

        aliases = client.get(f"{PREFIX}/alias/200046977").json()
        assert aliases["aliases"] == ["Grand Lyon", "Lyon Métropole"]

        matched = client.post(f"{PREFIX}/match", json={"query": "lyon metropole"}).json()
        assert matched["matchSource"] == "alias"

    def test_suggest_alias_unknown_target(self, client):
        resp = client.post(f"{PREFIX}/alias/suggest", json={"alias": "Nulle Part", "codeOfficiel": "999999999"})
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    def test_suggest_alias_conflict(self, client):
        resp = client.post(f"{PREFIX}/alias/suggest", json={"alias": "grand-lyon", "codeOfficiel": "69123"})
        assert resp.status_code == 409
        error = resp.json()["error"]
        assert error["code"] == "CONFLICT"
        assert error["details"] == {"existingAlias": "Grand Lyon", "targetCode": "200046977"}


class TestBatch:
    def test_batch_flow(self, client):
        resp = client.post(
            f"{PREFIX}/batch",
            json={"items": [{"query": "Lyon", "hints": {"type": "commune"}}, {"query": "Paris"}], "clientId": "c1"},
        )
        assert resp.status_code == 202
        submitted = resp.json()
        request_id = submitted["requestId"]
        assert submitted["status"] == "pending"
        assert submitted["totalItems"] == 2
        assert submitted["statusUrl"].endswith(f"{PREFIX}/batch/{request_id}")

        # sin scheduler el job queda pending
        pending = client.get(f"{PREFIX}/batch/{request_id}/results")
        assert pending.status_code == 202
        assert pending.headers["Retry-After"] == "5"
        assert pending.json()["results"] == []
        assert pending.json()["status"] == "pending"

        client.app.state.orchestrator.process(request_id)

        status = client.get(f"{PREFIX}/batch/{request_id}").json()
        assert status["status"] == "completed"
        assert status["progress"] == 100
        assert status["processed"] == status["matched"] + status["suggestions"] + status["failed"]

        done = client.get(f"{PREFIX}/batch/{request_id}/results")
        assert done.status_code == 200
        body = done.json()
        assert [r["index"] for r in body["results"]] == [0, 1]
        assert body["results"][0]["code"] == "69123"
        assert body["results"][1]["status"] == "suggestions"
        assert body["summary"] == {"total": 2, "matched": 1, "suggestions": 1, "failed": 0, "successRate": 50}

    def test_empty_items(self, client):
        resp = client.post(f"{PREFIX}/batch", json={"items": []})
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Items array cannot be empty"

    def test_missing_items(self, client):
        resp = client.post(f"{PREFIX}/batch", json={"clientId": "c1"})
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Items array is required"

    def test_oversized_batch(self, client):
        resp = client.post(f"{PREFIX}/batch", json={"items": [{"query": "Lyon"}] * 1001})
        assert resp.status_code == 429
        assert resp.json()["error"]["message"] == "Maximum 1000 items per batch"

    def test_malformed_request_id(self, client):
        assert client.get(f"{PREFIX}/batch/not-a-uuid").status_code == 400

    def test_unknown_request_id(self, client):
        resp = client.get(f"{PREFIX}/batch/{uuid.uuid4()}")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"
