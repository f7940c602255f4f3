"""HTTP surface: routes, envelopes, status codes and request validation."""

import pytest

from conftest import ACTIVITY_ROWS, make_task


PROJECT = "/api/v1/projects/P-1"

DEFAULTS_BODY = {
    "phase_weights": [
        {"phase_name": "F01", "weight_percent": 40, "sort_order": 1},
        {"phase_name": "F02", "weight_percent": 60, "sort_order": 2},
    ],
    "discipline_weights": [{"discipline_name": "Civil", "weight_factor": 1}],
    "activity_weights": ACTIVITY_ROWS,
}


@pytest.fixture
def seeded_client(client):
    response = client.put("/api/v1/weights/defaults", json=DEFAULTS_BODY)
    assert response.status_code == 200
    return client


def _store_snapshots(client):
    client.put(f"{PROJECT}/snapshots/2025-01-31", json={"tasks": [
        make_task("Lançamento A", duration=10), make_task("Ajuste B"),
    ]})
    client.put(f"{PROJECT}/snapshots/2025-02-28", json={"tasks": [
        make_task("Lançamento A", duration=15),
    ]})


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


class TestWeightRoutes:

    def test_put_and_get_defaults(self, seeded_client):
        data = seeded_client.get("/api/v1/weights/defaults").json()["data"]
        assert [p["phase_name"] for p in data["phase_weights"]] == ["F01", "F02"]
        assert data["total_phase_percent"] == 100.0
        assert data["is_valid"] is True

    def test_invalid_phase_sum(self, seeded_client):
        body = {"phase_weights": [{"phase_name": "F01", "weight_percent": 90}]}
        response = seeded_client.put("/api/v1/weights/defaults", json=body)
        assert response.status_code == 422
        assert "100%" in response.json()["detail"]

    def test_empty_layer_is_rejected(self, client):
        response = client.put("/api/v1/weights/defaults", json={"phase_weights": []})
        assert response.status_code == 422

    def test_project_overrides_lifecycle(self, seeded_client):
        response = seeded_client.put(f"{PROJECT}/weights", json={"phase_weights": {"F01": 100}})
        assert response.status_code == 200
        assert response.json()["data"]["is_customized"] is True

        data = seeded_client.get(f"{PROJECT}/weights").json()["data"]
        assert data["project_code"] == "P-1"
        assert [p["phase_name"] for p in data["phase_weights"]] == ["F01"]

        assert seeded_client.delete(f"{PROJECT}/weights").status_code == 204
        assert seeded_client.get(f"{PROJECT}/weights").json()["data"]["is_customized"] is False
        assert seeded_client.delete(f"{PROJECT}/weights").status_code == 204

    def test_reset_without_overrides(self, client):
        response = client.delete("/api/v1/projects/NEVER-SET/weights")
        assert response.status_code == 204
        assert response.content == b""

    def test_override_percent_out_of_range(self, seeded_client):
        response = seeded_client.put(f"{PROJECT}/weights", json={"phase_weights": {"F01": 150}})
        assert response.status_code == 422


class TestProgressRoutes:

    @pytest.fixture
    def loaded_client(self, seeded_client):
        response = seeded_client.put(f"{PROJECT}/tasks", json={"tasks": [
            make_task("Lançamento A", phase="F01", row=1),
            make_task("Lançamento B", phase="F02", status="Concluída", row=2),
        ]})
        assert response.json()["data"] == {"project_code": "P-1", "stored_tasks": 2}
        return seeded_client

    def test_progress(self, loaded_client):
        response = loaded_client.get(f"{PROJECT}/progress", params={"today": "2025-06-30"})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["progress"]["total_progress"] == 60.0
        assert data["progress"]["planned_progress"] == 100.0
        assert data["progress"]["idp"] == 0.6
        assert [t["peso_no_projeto"] for t in data["tasks"]] == [40.0, 60.0]
        assert data["weights"]["project_code"] == "P-1"

    def test_progress_without_tasks(self, seeded_client):
        data = seeded_client.get(f"{PROJECT}/progress").json()["data"]
        assert data["tasks"] == []
        assert data["progress"]["idp"] is None
        assert data["weights"] is None

    def test_task_breakdown(self, loaded_client):
        data = loaded_client.get(f"{PROJECT}/tasks").json()["data"]
        assert [t["rowNumber"] for t in data] == [1, 2]
        assert data[1]["is_complete"] is True
        assert data[0]["activity_type"] == "Lançamento"

    def test_timeseries(self, loaded_client):
        response = loaded_client.get(
            f"{PROJECT}/timeseries",
            params={"start_date": "2025-01-01", "end_date": "2025-02-28", "today": "2025-06-30"},
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert [p["month"] for p in data["timeseries"]] == ["Jan/25", "Fev/25"]
        assert [p["cumulative_progress"] for p in data["timeseries"]] == [60.0, 60.0]
        assert data["snapshot_curves"] == []

    def test_timeseries_rejects_inverted_range(self, loaded_client):
        response = loaded_client.get(
            f"{PROJECT}/timeseries", params={"start_date": "2025-03-01", "end_date": "2025-01-01"}
        )
        assert response.status_code == 422

    def test_discipline_mappings(self, client):
        body = {"mappings": [
            {"external_discipline_name": "CIV", "standard_discipline": {"discipline_name": "Civil"}},
        ]}
        response = client.put(f"{PROJECT}/discipline-mappings", json=body)
        assert response.status_code == 200
        assert response.json()["data"] == {"CIV": "Civil"}


class TestChangeLogRoutes:

    ANNOTATION = {
        "from_snapshot_date": "2025-01-31",
        "to_snapshot_date": "2025-02-28",
        "change_type": "DESVIO_PRAZO",
        "task_name": "Lançamento A",
        "description": "Atraso do fornecedor",
        "user_email": "coord@example.com",
    }

    def test_changelog_with_annotation(self, client):
        _store_snapshots(client)
        response = client.put(f"{PROJECT}/changelog/annotations", json=self.ANNOTATION)
        assert response.status_code == 200
        assert response.json()["data"]["created_by_email"] == "coord@example.com"

        data = client.get(f"{PROJECT}/changelog").json()["data"]
        pair = data["month_pairs"][0]
        assert (pair["from_label"], pair["to_label"]) == ("Jan/25", "Fev/25")
        deviation = next(c for c in pair["changes"] if c["type"] == "DESVIO_PRAZO")
        assert deviation["delta_days"] == 5
        assert deviation["annotation"]["description"] == "Atraso do fornecedor"
        assert data["overall_summary"]["total_annotated"] == 1

    def test_empty_changelog(self, client):
        data = client.get(f"{PROJECT}/changelog").json()["data"]
        assert data["month_pairs"] == []
        assert data["overall_summary"]["total_changes"] == 0

    @pytest.mark.parametrize("override", [
        {"change_type": "TAREFA_MOVIDA"},
        {"to_snapshot_date": "2025-01-31"},
        {"user_email": "not-an-email"},
        {"task_name": ""},
    ])
    def test_invalid_annotation(self, client, override):
        body = dict(self.ANNOTATION, **override)
        response = client.put(f"{PROJECT}/changelog/annotations", json=body)
        assert response.status_code == 422

    def test_portfolio(self, client):
        _store_snapshots(client)
        data = client.get(
            "/api/v1/portfolio/changelog", params={"project_code": ["P-1", "P-9"]}
        ).json()["data"]
        assert [p["project_code"] for p in data["by_project"]] == ["P-1"]
        assert data["summary"]["total_changes"] == 2
        assert data["aggregated_discipline_scores"][0]["disciplina"] == "Civil"
