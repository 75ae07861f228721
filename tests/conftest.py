from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Optional

import pytest

from healthkit_extract.config import Settings

NOW = datetime(2024, 2, 1, tzinfo=timezone.utc)

HEADER = '<?xml version="1.0" encoding="UTF-8"?>\n<HealthData locale="en_US">\n'
FOOTER = "</HealthData>\n"


def apple_date(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%d %H:%M:%S %z")


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def sample_xml_path() -> str:
    return str(Path(__file__).parent / "fixtures" / "sample_export.xml")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        chunk_size=4096,
        progress_interval=5,
        fallback_days=7,
        validate_fragments=True,
        storage_backend="file",
        output_dir=str(tmp_path / "out"),
    )


@pytest.fixture
def make_record() -> Callable[..., str]:
    """Build one <Record> element as it appears in an export."""

    def _make(
        record_type: str,
        start: datetime,
        value: Optional[str] = "1",
        unit: Optional[str] = "count",
        end: Optional[datetime] = None,
        source: str = "Apple Watch",
    ) -> str:
        attrs = [f'type="{record_type}"', f'sourceName="{source}"', 'sourceVersion="10.1"']
        if unit is not None:
            attrs.append(f'unit="{unit}"')
        attrs.append(f'startDate="{apple_date(start)}"')
        attrs.append(f'endDate="{apple_date(end or start)}"')
        if value is not None:
            attrs.append(f'value="{value}"')
        return f' <Record {" ".join(attrs)}/>\n'

    return _make


@pytest.fixture
def write_export(tmp_path: Path) -> Callable[[Iterable[str]], str]:
    """Write an export.xml wrapping the given element strings; returns its path."""
    counter = {"n": 0}

    def _write(elements: Iterable[str]) -> str:
        counter["n"] += 1
        path = tmp_path / f"export_{counter['n']}.xml"
        path.write_text(HEADER + "".join(elements) + FOOTER, encoding="utf-8")
        return str(path)

    return _write
