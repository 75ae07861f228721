"""Persistence targets for finished series."""

import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings
from .exceptions import SinkFailureError

Series = List[Dict[str, Any]]

_SAFE_ID = re.compile(r"[A-Za-z0-9_.@-]+")


def series_key(metric: str, user_id: Optional[str] = None) -> str:
    """``data/<user>/<metric>.json`` per user, ``<metric>.json`` otherwise."""
    if user_id is None:
        return f"{metric}.json"
    if not _SAFE_ID.fullmatch(user_id) or user_id in (".", ".."):
        raise ValueError(f"Invalid user id: {user_id!r}")
    return f"data/{user_id}/{metric.lower()}.json"


def dump_series(series: Series) -> bytes:
    return json.dumps(series, indent=2, ensure_ascii=False).encode("utf-8")


class SeriesSink:
    def write(self, key: str, series: Series) -> None:
        raise NotImplementedError

    def read(self, key: str) -> Optional[Series]:
        """Return the stored series, or None if nothing was written under ``key``."""
        raise NotImplementedError


class FileSink(SeriesSink):
    """Writes each series as a JSON file below ``directory``.

    Files are replaced atomically, so readers never see a truncated series.
    """

    def __init__(self, directory: Union[str, os.PathLike]):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        path = (self.directory / key).resolve()
        root = self.directory.resolve()
        if root != path and root not in path.parents:
            raise ValueError(f"Key escapes output directory: {key!r}")
        return path

    def write(self, key: str, series: Series) -> None:
        path = self._path(key)
        payload = dump_series(series)
        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "wb", dir=path.parent, prefix=f".{path.name}.", delete=False
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(payload)
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise SinkFailureError(key, e.strerror or str(e)) from e

    def read(self, key: str) -> Optional[Series]:
        path = self._path(key)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise SinkFailureError(key, e.strerror or str(e)) from e
        return json.loads(data)


class S3Sink(SeriesSink):
    def __init__(self, client: Any, bucket: str):
        self.client = client
        self.bucket = bucket

    def write(self, key: str, series: Series) -> None:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=dump_series(series),
                ContentType="application/json",
            )
        except (ClientError, BotoCoreError) as e:
            raise SinkFailureError(key, str(e)) from e

    def read(self, key: str) -> Optional[Series]:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            data = response["Body"].read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return None
            raise SinkFailureError(key, str(e)) from e
        except BotoCoreError as e:
            raise SinkFailureError(key, str(e)) from e
        return json.loads(data)


def build_s3_client(settings: Settings) -> Any:
    return boto3.client("s3", region_name=settings.aws_region)


def build_sink(settings: Settings) -> SeriesSink:
    if settings.storage_backend == "s3":
        if not settings.aws_bucket_name:
            raise ValueError("aws_bucket_name is required for the s3 storage backend")
        return S3Sink(build_s3_client(settings), settings.aws_bucket_name)
    return FileSink(settings.output_dir)
