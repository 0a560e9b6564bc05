import json
import sqlite3
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from app.main import create_app


def _create_payload(split=(50, 50), status="running", **overrides):
    payload = {
        "landing_page_id": "page-1",
        "name": "Hero headline test",
        "status": status,
        "variants": [
            {
                "name": "control" if i == 0 else f"variant_{i}",
                "template_id": f"template-{i}",
                "traffic_percentage": pct,
                "is_control": i == 0,
            }
            for i, pct in enumerate(split)
        ],
        "goals": [{"name": "Signup", "type": "form_submit"}],
    }
    payload.update(overrides)
    return payload


def _create(client, **kwargs):
    response = client.post("/api/v1/ab-tests", json=_create_payload(**kwargs))
    assert response.status_code == 201
    return response.json()


class TestCreateEndpoint:
    def test_create(self, client):
        response = client.post("/api/v1/ab-tests", json=_create_payload())

        assert response.status_code == 201
        data = response.json()
        assert data["id"]
        assert data["status"] == "running"
        assert data["confidence_level"] == 95.0
        assert [v["name"] for v in data["variants"]] == ["control", "variant_1"]
        assert data["goals"][0]["schema_version"] == 1
        assert data["goals"][0]["type"] == "form_submit"

    def test_bad_split_rejected(self, client):
        response = client.post("/api/v1/ab-tests", json=_create_payload(split=(50, 49)))

        assert response.status_code == 422
        data = response.json()
        assert data["error_type"] == "traffic_configuration_error"
        assert data["total"] == 99

        active = client.get("/api/v1/ab-tests/pages/page-1/active").json()
        assert active["total"] == 0

    def test_missing_variants_rejected(self, client):
        response = client.post("/api/v1/ab-tests", json=_create_payload(variants=[]))

        assert response.status_code == 422

    def test_end_before_start_rejected(self, client):
        start = datetime(2024, 2, 1, tzinfo=timezone.utc)
        response = client.post(
            "/api/v1/ab-tests",
            json=_create_payload(
                start_date=start.isoformat(),
                end_date=(start - timedelta(days=1)).isoformat(),
            ),
        )

        assert response.status_code == 422


class TestReadEndpoints:
    def test_get_test(self, client):
        created = _create(client)

        response = client.get(f"/api/v1/ab-tests/{created['id']}")

        assert response.status_code == 200
        assert response.json()["id"] == created["id"]

    def test_unknown_test(self, client):
        response = client.get("/api/v1/ab-tests/missing-test")

        assert response.status_code == 404
        data = response.json()
        assert data["error_type"] == "test_not_found"
        assert data["test_id"] == "missing-test"

    def test_active_for_page(self, client):
        running = _create(client)
        _create(client, status="draft")

        response = client.get("/api/v1/ab-tests/pages/page-1/active")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["tests"][0]["id"] == running["id"]


class TestAllocateEndpoint:
    def test_sticky_allocation(self, client):
        created = _create(client)
        url = f"/api/v1/ab-tests/{created['id']}/allocate"

        first = client.post(url, json={"visitor_id": "hello"}).json()
        second = client.post(url, json={"visitor_id": "hello"}).json()

        assert first["allocated"] is True
        assert first["variant"]["name"] == "control"
        assert second["variant"]["id"] == first["variant"]["id"]

    def test_not_running(self, client):
        created = _create(client, status="draft")

        response = client.post(
            f"/api/v1/ab-tests/{created['id']}/allocate", json={"visitor_id": "hello"}
        )

        assert response.status_code == 200
        assert response.json() == {"test_id": created["id"], "allocated": False, "variant": None}

    def test_unknown_test(self, client):
        response = client.post("/api/v1/ab-tests/missing-test/allocate", json={"visitor_id": "hello"})

        assert response.status_code == 404

    def test_empty_visitor(self, client):
        created = _create(client)

        response = client.post(f"/api/v1/ab-tests/{created['id']}/allocate", json={"visitor_id": ""})

        assert response.status_code == 422


class TestConversionEndpoint:
    def test_record_conversion(self, client):
        created = _create(client)
        variant = client.post(
            f"/api/v1/ab-tests/{created['id']}/allocate", json={"visitor_id": "hello"}
        ).json()["variant"]

        response = client.post(
            f"/api/v1/ab-tests/{created['id']}/conversions",
            json={"variant_id": variant["id"], "visitor_id": "hello", "value": 12.5},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["variant_id"] == variant["id"]
        assert data["conversion_type"] == "conversion"
        assert data["conversion_value"] == 12.5

    def test_mismatch_conflict(self, client):
        created = _create(client)
        control, challenger = created["variants"]
        client.post(f"/api/v1/ab-tests/{created['id']}/allocate", json={"visitor_id": "hello"})

        response = client.post(
            f"/api/v1/ab-tests/{created['id']}/conversions",
            json={"variant_id": challenger["id"], "visitor_id": "hello"},
        )

        assert response.status_code == 409
        data = response.json()
        assert data["error_type"] == "allocation_mismatch"
        assert data["expected_variant_id"] == control["id"]

    def test_unallocated_visitor(self, client):
        created = _create(client)

        response = client.post(
            f"/api/v1/ab-tests/{created['id']}/conversions",
            json={"variant_id": created["variants"][0]["id"], "visitor_id": "stranger"},
        )

        assert response.status_code == 404
        assert response.json()["error_type"] == "allocation_not_found"


class TestResultsEndpoint:
    def test_results(self, client):
        created = _create(client)
        url = f"/api/v1/ab-tests/{created['id']}"
        variant = client.post(f"{url}/allocate", json={"visitor_id": "hello"}).json()["variant"]
        client.post(f"{url}/conversions", json={"variant_id": variant["id"], "visitor_id": "hello"})

        response = client.get(f"{url}/results")

        assert response.status_code == 200
        data = response.json()
        assert data["test_id"] == created["id"]
        assert data["test_status"] == "insufficient_data"
        assert data["comparisons"] == 1
        assert data["variants"][0]["is_control"] is True
        assert sum(v["conversions"] for v in data["variants"]) == 1

    def test_results_filtered(self, client):
        created = _create(client)
        url = f"/api/v1/ab-tests/{created['id']}"
        variant = client.post(f"{url}/allocate", json={"visitor_id": "hello"}).json()["variant"]
        client.post(
            f"{url}/conversions",
            json={"variant_id": variant["id"], "visitor_id": "hello", "conversion_type": "click"},
        )

        data = client.get(f"{url}/results", params={"conversion_type": "signup"}).json()

        assert sum(v["conversion_events"] for v in data["variants"]) == 0


class TestLifecycleEndpoints:
    def test_update_status(self, client):
        created = _create(client, status="draft")

        response = client.put(
            f"/api/v1/ab-tests/{created['id']}/status", json={"status": "running"}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "running"
        assert response.json()["start_date"] is not None

    def test_invalid_status(self, client):
        created = _create(client)

        response = client.put(
            f"/api/v1/ab-tests/{created['id']}/status", json={"status": "archived"}
        )

        assert response.status_code == 422

    def test_rebalance(self, client):
        created = _create(client)
        control, challenger = created["variants"]

        response = client.put(
            f"/api/v1/ab-tests/{created['id']}/traffic",
            json={"traffic": {control["id"]: 10, challenger["id"]: 90}},
        )

        assert response.status_code == 200
        assert [v["traffic_percentage"] for v in response.json()["variants"]] == [10, 90]

    def test_rebalance_bad_sum(self, client):
        created = _create(client)

        response = client.put(
            f"/api/v1/ab-tests/{created['id']}/traffic",
            json={"traffic": {created["variants"][0]["id"]: 10}},
        )

        assert response.status_code == 422

    def test_delete(self, client):
        created = _create(client)

        response = client.delete(f"/api/v1/ab-tests/{created['id']}")

        assert response.status_code == 204
        assert client.get(f"/api/v1/ab-tests/{created['id']}").status_code == 404

    def test_cleanup(self, client):
        response = client.post("/api/v1/ab-tests/maintenance/cleanup", params={"days_to_keep": 30})

        assert response.status_code == 200
        data = response.json()
        assert data["conversions_deleted"] == 0
        assert data["allocations_deleted"] == 0


class TestHealth:
    def test_health(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200

    def test_health_db(self, client):
        response = client.get("/api/v1/health/db")

        assert response.status_code == 200

    def test_request_id_header(self, client):
        response = client.get("/api/v1/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
        assert "X-Process-Time" in response.headers


class TestErrorMapping:
    def test_client_errors_keep_their_status(self, client):
        response = client.post("/api/v1/ab-tests/maintenance/cleanup", params={"days_to_keep": -1})

        assert response.status_code == 422

    def test_invalid_stored_goal_is_a_server_error(self, client, settings):
        created = _create(client)

        db_path = settings.DATABASE_URL.split(":///", 1)[1]
        with sqlite3.connect(db_path) as conn:
            conn.execute(
                "UPDATE landing_page_ab_tests SET goals = ? WHERE id = ?",
                (json.dumps([{"schema_version": 2, "name": "Signup"}]), created["id"]),
            )

        with TestClient(create_app(settings), raise_server_exceptions=False) as lenient:
            response = lenient.get(f"/api/v1/ab-tests/{created['id']}")

        assert response.status_code == 500
