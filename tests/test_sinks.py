import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from healthkit_extract.config import Settings
from healthkit_extract.exceptions import SinkFailureError
from healthkit_extract.sinks import FileSink, S3Sink, build_sink, dump_series, series_key

SERIES = [{"date": "2024-01-08", "value": 45.3, "sourceName": "Apple Watch", "unit": "mL/min·kg"}]


# === Keys ===

def test_series_key_without_user():
    assert series_key("heartRate") == "heartRate.json"


def test_series_key_per_user_is_lowercased():
    assert series_key("bodyFat", "user-1") == "data/user-1/bodyfat.json"


@pytest.mark.parametrize("user_id", ["", "..", ".", "a/b", "../etc", "user 1"])
def test_series_key_rejects_unsafe_user_ids(user_id: str):
    with pytest.raises(ValueError):
        series_key("heartRate", user_id)


def test_dump_series_keeps_unicode():
    payload = dump_series(SERIES)
    assert "mL/min·kg".encode("utf-8") in payload
    assert json.loads(payload) == SERIES


# === FileSink ===

def test_file_sink_round_trip(tmp_path: Path):
    sink = FileSink(tmp_path)

    sink.write("data/user-1/vo2max.json", SERIES)

    assert (tmp_path / "data" / "user-1" / "vo2max.json").exists()
    assert sink.read("data/user-1/vo2max.json") == SERIES
    assert [p.name for p in (tmp_path / "data" / "user-1").iterdir()] == ["vo2max.json"]


def test_file_sink_overwrites(tmp_path: Path):
    sink = FileSink(tmp_path)
    sink.write("hrv.json", SERIES)
    sink.write("hrv.json", [])
    assert sink.read("hrv.json") == []


def test_file_sink_missing_key_reads_none(tmp_path: Path):
    assert FileSink(tmp_path).read("nothing.json") is None


def test_file_sink_rejects_escaping_keys(tmp_path: Path):
    with pytest.raises(ValueError):
        FileSink(tmp_path / "out").write("../escape.json", SERIES)


def test_file_sink_write_failure(tmp_path: Path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    sink = FileSink(tmp_path)

    with pytest.raises(SinkFailureError) as exc:
        sink.write("blocker/hrv.json", SERIES)

    assert exc.value.code == "SINK_FAILURE"
    assert exc.value.details == {"key": "blocker/hrv.json"}


# === S3Sink ===

def test_s3_sink_puts_json():
    client = MagicMock()
    S3Sink(client, "health-data").write("data/u/hrv.json", SERIES)

    client.put_object.assert_called_once()
    kwargs = client.put_object.call_args.kwargs
    assert kwargs["Bucket"] == "health-data"
    assert kwargs["Key"] == "data/u/hrv.json"
    assert kwargs["ContentType"] == "application/json"
    assert json.loads(kwargs["Body"]) == SERIES


def test_s3_sink_put_failure():
    client = MagicMock()
    client.put_object.side_effect = ClientError({"Error": {"Code": "AccessDenied", "Message": "no"}}, "PutObject")

    with pytest.raises(SinkFailureError):
        S3Sink(client, "health-data").write("hrv.json", SERIES)


def test_s3_sink_reads_back():
    body = MagicMock()
    body.read.return_value = dump_series(SERIES)
    client = MagicMock()
    client.get_object.return_value = {"Body": body}

    assert S3Sink(client, "health-data").read("hrv.json") == SERIES


def test_s3_sink_missing_key_reads_none():
    client = MagicMock()
    client.get_object.side_effect = ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")

    assert S3Sink(client, "health-data").read("hrv.json") is None


# === build_sink ===

def test_build_sink_defaults_to_files(tmp_path: Path):
    sink = build_sink(Settings(output_dir=str(tmp_path)))
    assert isinstance(sink, FileSink)
    assert sink.directory == tmp_path


def test_build_sink_s3(monkeypatch):
    client = MagicMock()
    calls = []

    def fake_client(service, region_name=None):
        calls.append((service, region_name))
        return client

    monkeypatch.setattr("healthkit_extract.sinks.boto3.client", fake_client)

    sink = build_sink(Settings(storage_backend="s3", aws_bucket_name="health-data", aws_region="eu-west-1"))

    assert isinstance(sink, S3Sink)
    assert sink.client is client
    assert sink.bucket == "health-data"
    assert calls == [("s3", "eu-west-1")]


def test_build_sink_s3_requires_bucket():
    with pytest.raises(ValueError):
        build_sink(Settings(storage_backend="s3"))


def test_settings_validation():
    with pytest.raises(ValueError):
        Settings(chunk_size=0).validate_storage()
    with pytest.raises(ValueError):
        Settings(storage_backend="s3").validate_storage()
