# tests/test_api.py

import pytest
from pathlib import Path
from fastapi import HTTPException
from fastapi.testclient import TestClient

from api.main import _safe_run, app, get_sink
from healthkit_extract.exceptions import SinkFailureError, SourceUnavailableError, UnknownMetricError
from healthkit_extract.sinks import FileSink

USER = {"X-User-Id": "user-1"}
NOW = "2024-02-01T00:00:00Z"


@pytest.fixture
def out_dir(tmp_path: Path) -> Path:
    return tmp_path / "out"


@pytest.fixture
def client(out_dir: Path):
    app.dependency_overrides[get_sink] = lambda: FileSink(out_dir)
    yield TestClient(app)
    app.dependency_overrides.clear()


# === Service endpoints ===

def test_health(client: TestClient):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_lists_metrics(client: TestClient):
    r = client.get("/metrics")
    assert r.status_code == 200
    names = [m["name"] for m in r.json()]
    assert "heartRate" in names
    assert "workouts" in names
    weight = next(m for m in r.json() if m["name"] == "weight")
    assert weight["order"] == "descending"
    assert weight["retention"] == "4y"


# === /extract ===

def test_extract_requires_user(client: TestClient, sample_xml_path: str):
    r = client.post("/extract/heartRate", params={"file_path": sample_xml_path})
    assert r.status_code == 401


def test_extract_single_metric(client: TestClient, sample_xml_path: str, out_dir: Path):
    r = client.post("/extract/heartRate", params={"file_path": sample_xml_path, "now": NOW}, headers=USER)

    assert r.status_code == 200
    body = r.json()
    assert body["key"] == "data/user-1/heartrate.json"
    assert body["recordsFound"] == 3
    assert body["usedFallback"] is False
    assert (out_dir / "data" / "user-1" / "heartrate.json").exists()


def test_extract_then_read_series(client: TestClient, sample_xml_path: str):
    client.post("/extract/weight", params={"file_path": sample_xml_path, "now": NOW}, headers=USER)

    r = client.get("/series/weight", headers=USER)

    assert r.status_code == 200
    assert r.headers["X-Total-Count"] == "2"
    assert [p["value"] for p in r.json()] == [80.2, 81.65]


def test_series_are_per_user(client: TestClient, sample_xml_path: str):
    client.post("/extract/weight", params={"file_path": sample_xml_path, "now": NOW}, headers=USER)
    r = client.get("/series/weight", headers={"X-User-Id": "someone-else"})
    assert r.status_code == 404


def test_extract_unknown_metric(client: TestClient, sample_xml_path: str):
    r = client.post("/extract/bloodPressure", params={"file_path": sample_xml_path}, headers=USER)
    assert r.status_code == 404
    assert "Unknown metric" in r.json()["detail"]


def test_extract_missing_file(client: TestClient, tmp_path: Path):
    r = client.post("/extract/heartRate", params={"file_path": str(tmp_path / "nope.xml")}, headers=USER)
    assert r.status_code == 404


def test_extract_bad_timestamp(client: TestClient, sample_xml_path: str):
    r = client.post("/extract/heartRate", params={"file_path": sample_xml_path, "now": "whenever"}, headers=USER)
    assert r.status_code == 422


def test_extract_rejects_unsafe_user(client: TestClient, sample_xml_path: str):
    r = client.post("/extract/heartRate", params={"file_path": sample_xml_path}, headers={"X-User-Id": "../root"})
    assert r.status_code == 422


def test_extract_many(client: TestClient, sample_xml_path: str):
    r = client.post(
        "/extract",
        params={"file_path": sample_xml_path, "now": NOW, "metrics": ["steps", "sleep"]},
        headers=USER,
    )

    assert r.status_code == 200
    assert r.headers["X-Total-Count"] == "2"
    assert [res["metric"] for res in r.json()] == ["steps", "sleep"]


def test_extract_defaults_to_upload_set(client: TestClient, sample_xml_path: str):
    r = client.post("/extract", params={"file_path": sample_xml_path, "now": NOW}, headers=USER)
    assert r.status_code == 200
    assert [res["metric"] for res in r.json()] == ["heartRate", "weight", "bodyFat", "sleep", "hrv", "workouts"]


def test_read_series_not_written(client: TestClient):
    r = client.get("/series/hrv", headers=USER)
    assert r.status_code == 404


# === Error mapping ===

@pytest.mark.parametrize(
    "exc, status",
    [
        (UnknownMetricError("x"), 404),
        (SourceUnavailableError("export.xml", "No such file"), 404),
        (SinkFailureError("hrv.json", "disk full"), 502),
        (ValueError("bad"), 422),
    ],
)
def test_safe_run_maps_errors(exc: Exception, status: int):
    def boom():
        raise exc

    with pytest.raises(HTTPException) as e:
        _safe_run(boom)
    assert e.value.status_code == status


def test_read_series_rejects_corrupted_file(client: TestClient, out_dir: Path):
    FileSink(out_dir).write("data/user-1/hrv.json", [{"date": "2024-01-10"}])

    r = client.get("/series/hrv", headers=USER)

    assert r.status_code == 502
    assert "stored series is invalid" in r.json()["detail"]
