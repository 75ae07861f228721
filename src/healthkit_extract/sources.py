"""Byte-chunk sources over an immutable export artifact.

Each call to ``iter_chunks`` opens an independent stream, so sequential runs
over the same export never share a handle.
"""

import os
from pathlib import Path
from typing import Any, Iterator, Optional, Union

from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import SourceUnavailableError

DEFAULT_CHUNK_SIZE = 64 * 1024


class ChunkSource:
    name: str = "source"

    @property
    def size(self) -> Optional[int]:
        """Total size in bytes, when known."""
        return None

    def iter_chunks(self) -> Iterator[bytes]:
        raise NotImplementedError


class FileSource(ChunkSource):
    def __init__(self, path: Union[str, os.PathLike], chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.path = Path(path)
        self.name = str(self.path)
        self.chunk_size = chunk_size

    @property
    def size(self) -> Optional[int]:
        try:
            return self.path.stat().st_size
        except OSError:
            return None

    def iter_chunks(self) -> Iterator[bytes]:
        try:
            fh = open(self.path, "rb")
        except OSError as e:
            raise SourceUnavailableError(self.name, e.strerror or str(e)) from e
        with fh:
            while True:
                try:
                    chunk = fh.read(self.chunk_size)
                except OSError as e:
                    raise SourceUnavailableError(self.name, e.strerror or str(e)) from e
                if not chunk:
                    return
                yield chunk


class S3Source(ChunkSource):
    """Streams an export stored in object storage via ``get_object``."""

    def __init__(self, client: Any, bucket: str, key: str, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.client = client
        self.bucket = bucket
        self.key = key
        self.name = f"s3://{bucket}/{key}"
        self.chunk_size = chunk_size
        self._size: Optional[int] = None

    @property
    def size(self) -> Optional[int]:
        return self._size

    def iter_chunks(self) -> Iterator[bytes]:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=self.key)
        except (ClientError, BotoCoreError) as e:
            raise SourceUnavailableError(self.name, str(e)) from e
        self._size = response.get("ContentLength")
        body = response["Body"]
        try:
            for chunk in body.iter_chunks(chunk_size=self.chunk_size):
                if chunk:
                    yield chunk
        except (ClientError, BotoCoreError) as e:
            raise SourceUnavailableError(self.name, str(e)) from e
        finally:
            body.close()


def as_source(source: Union[str, os.PathLike, ChunkSource], chunk_size: int = DEFAULT_CHUNK_SIZE) -> ChunkSource:
    if isinstance(source, ChunkSource):
        return source
    return FileSource(source, chunk_size=chunk_size)
