import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Collection, Dict, FrozenSet, Optional, Union
from xml.sax.saxutils import unescape

from lxml import etree  # type: ignore

from .exceptions import MalformedRecordError
from .scanner import RECORD_TAG, WORKOUT_TAG

_ENTITIES = {"&quot;": '"', "&apos;": "'"}

# Well-formedness check only: no entities, no DTD, no network.
_STRICT_PARSER = etree.XMLParser(
    resolve_entities=False,
    no_network=True,
    load_dtd=False,
    recover=False,
    huge_tree=True,
)


@dataclass(frozen=True, slots=True)
class RecordLayout:
    """Attribute names carrying each field for one element kind."""
    tag: str
    type_attr: str = "type"
    value_attr: str = "value"
    unit_attr: str = "unit"
    source_attr: str = "sourceName"
    start_attr: str = "startDate"
    end_attr: str = "endDate"


RECORD_LAYOUT = RecordLayout(tag=RECORD_TAG)
WORKOUT_LAYOUT = RecordLayout(
    tag=WORKOUT_TAG,
    type_attr="workoutActivityType",
    value_attr="duration",
    unit_attr="durationUnit",
)


@dataclass(frozen=True, slots=True)
class RawRecord:
    """Untyped attribute bag scraped from one element. Never persisted."""
    record_type: str
    value: str
    unit: str
    source_name: str
    start_date: str
    end_date: Optional[str] = None


class RecordFieldExtractor:
    """Pull the fields of one complete element via targeted pattern matching.

    ``targets`` restricts the accepted type identifiers; ``None`` accepts any
    (used for workouts, where every activity type is wanted).
    """

    def __init__(
        self,
        targets: Optional[Collection[str]],
        layout: RecordLayout = RECORD_LAYOUT,
        validate: bool = True,
    ):
        self.targets: Optional[FrozenSet[str]] = frozenset(targets) if targets else None
        self.layout = layout
        self.validate = validate
        self._patterns: Dict[str, "re.Pattern[str]"] = {
            name: re.compile(rf'\s{re.escape(name)}\s*=\s*"([^"]*)"')
            for name in (
                layout.type_attr,
                layout.value_attr,
                layout.unit_attr,
                layout.source_attr,
                layout.start_attr,
                layout.end_attr,
            )
        }

    def extract(self, fragment: str) -> Optional[RawRecord]:
        """Return a RawRecord, or None when the element is of another type.

        Raises MalformedRecordError when a required attribute is missing or the
        fragment is not well-formed.
        """
        # Only the opening tag: child <MetadataEntry value="..."/> must not leak.
        end = fragment.find(">")
        if end == -1:
            raise MalformedRecordError("unterminated opening tag", fragment)
        head = fragment[: end + 1]

        record_type = self._attr(head, self.layout.type_attr)
        if record_type is None:
            if self.targets is not None:
                return None
            raise MalformedRecordError(f"missing {self.layout.type_attr}", fragment)
        if self.targets is not None and record_type not in self.targets:
            return None

        if self.validate:
            self._check_well_formed(fragment)

        start = self._attr(head, self.layout.start_attr)
        if not start:
            raise MalformedRecordError(f"missing {self.layout.start_attr}", fragment)
        value = self._attr(head, self.layout.value_attr)
        if value is None or not value.strip():
            raise MalformedRecordError(f"missing {self.layout.value_attr}", fragment)

        return RawRecord(
            record_type=record_type,
            value=value.strip(),
            unit=self._attr(head, self.layout.unit_attr) or "",
            source_name=self._attr(head, self.layout.source_attr) or "",
            start_date=start,
            end_date=self._attr(head, self.layout.end_attr),
        )

    def _attr(self, head: str, name: str) -> Optional[str]:
        m = self._patterns[name].search(head)
        if m is None:
            return None
        raw = m.group(1)
        return unescape(raw, _ENTITIES) if "&" in raw else raw

    @staticmethod
    def _check_well_formed(fragment: str) -> None:
        try:
            etree.fromstring(fragment.encode("utf-8"), parser=_STRICT_PARSER)
        except etree.XMLSyntaxError as e:
            raise MalformedRecordError(f"not well-formed: {e}", fragment) from e


def to_datetime(value: Optional[Union[str, datetime]]) -> Optional[datetime]:
    """Best-effort parser returning a timezone-aware datetime or None."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    if not isinstance(value, str):
        return None
    s = value.strip()
    if not s:
        return None

    # 1) ISO Zulu (ends with 'Z' or 'z')
    if s[-1:] in {"Z", "z"}:
        try:
            return datetime.fromisoformat(s[:-1] + "+00:00")
        except ValueError:
            return None

    # 2) Apple Health canonical export format: 'YYYY-MM-DD HH:MM:SS -0700'
    try:
        return datetime.strptime(s, "%Y-%m-%d %H:%M:%S %z")
    except ValueError:
        pass

    # 3) ISO with explicit offset (e.g., 'YYYY-MM-DDTHH:MM:SS-07:00')
    try:
        dt = datetime.fromisoformat(s)
        return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    except ValueError:
        pass

    # 4) Naive forms, assumed UTC
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d"):
        try:
            return datetime.strptime(s, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    return None


def to_iso_utc(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
