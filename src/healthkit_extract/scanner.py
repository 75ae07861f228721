"""Incremental scanner that cuts complete elements out of a text stream.

Apple Health exports are too large for a DOM parse, so the scanner works on
a rolling string buffer and regular expressions. This relies on two
properties of the export format:

* scanned elements (``Record``, ``Workout``) never nest inside themselves;
* attribute values are double-quoted and never contain a raw ``>``
  (the exporter escapes it as ``&gt;``).
"""

import re
from typing import Iterable, Iterator, List

RECORD_TAG = "Record"
WORKOUT_TAG = "Workout"


class ChunkBoundaryScanner:
    """Yield complete ``<tag ...>...</tag>`` or ``<tag .../>`` substrings.

    Feed arbitrary text chunks with :meth:`feed`. After every call the buffer
    holds no complete element, only (at most) the prefix of the next one.
    """

    def __init__(self, tag: str = RECORD_TAG):
        if not re.fullmatch(r"[A-Za-z_][\w.-]*", tag):
            raise ValueError(f"Invalid element name: {tag!r}")
        self.tag = tag
        self.marker = f"<{tag}"
        name = re.escape(tag)
        # Opening marker must be followed by whitespace, '/' or '>' so that
        # <WorkoutEvent> is not mistaken for <Workout>.
        opening = rf"<{name}(?=[\s/>])"
        self._opening = re.compile(opening)
        # The body may not contain another opening marker: an unterminated
        # element must not swallow the element after it.
        self._complete = re.compile(
            rf"{opening}[^>]*?(?:/>|>(?:(?!{opening}).)*?</{name}\s*>)",
            re.DOTALL,
        )
        self.buffer = ""

    def feed(self, chunk: str) -> List[str]:
        """Append ``chunk`` and return every element it completed, in order."""
        self.buffer += chunk
        found: List[str] = []
        consumed = 0
        for match in self._complete.finditer(self.buffer):
            found.append(match.group(0))
            consumed = match.end()
        self.buffer = self._retain(self.buffer[consumed:])
        return found

    def _retain(self, tail: str) -> str:
        start = self._opening.search(tail)
        if start is not None:
            return tail[start.start():]
        # The chunk may have ended inside the marker itself ("<Rec").
        lt = tail.rfind("<")
        if lt != -1 and self.marker.startswith(tail[lt:]):
            return tail[lt:]
        return ""

    def reset(self) -> None:
        self.buffer = ""


def iter_elements(chunks: Iterable[str], tag: str = RECORD_TAG) -> Iterator[str]:
    """Convenience generator over :class:`ChunkBoundaryScanner`.

    A partial element left in the buffer when ``chunks`` is exhausted is dropped.
    """
    scanner = ChunkBoundaryScanner(tag)
    for chunk in chunks:
        yield from scanner.feed(chunk)
