"""Byte ranges and whole-buffer rewrites of source text.

Every pass in rsbundle consumes one immutable snapshot of the source
(``bytes``) and produces a new one. Ranges are only meaningful against the
snapshot they were computed from, so nothing here ever edits a buffer in
place: deletions and replacements are applied in a single forward sweep
that builds a fresh buffer.
"""

from collections.abc import Iterable

from attrs import define


class BundleError(Exception):
    """Base class for every failure that aborts bundling a binary."""


class SourceEncodingError(BundleError):
    """Raised when source bytes are not valid UTF-8."""


@define(frozen=True, order=True)
class ByteRange:
    """A half-open ``[start, end)`` range of byte offsets."""

    start: int
    end: int

    def __attrs_post_init__(self) -> None:
        if not 0 <= self.start <= self.end:
            raise ValueError(f"Invalid byte range [{self.start}, {self.end})")

    def __len__(self) -> int:
        return self.end - self.start

    def __contains__(self, other: "ByteRange") -> bool:
        return self.start <= other.start and other.end <= self.end

    def slice(self, source: bytes) -> bytes:
        return source[self.start : self.end]


def merge_ranges(ranges: Iterable[ByteRange]) -> list[ByteRange]:
    """Sort ranges and merge any that overlap or touch."""
    normalized: list[list[int]] = []
    for r in sorted(ranges):
        if normalized and normalized[-1][-1] >= r.start:
            normalized[-1][-1] = max(normalized[-1][-1], r.end)
        else:
            normalized.append([r.start, r.end])
    return [ByteRange(start, end) for start, end in normalized]


def decode(source: bytes) -> str:
    try:
        return source.decode("utf-8")
    except UnicodeDecodeError as e:
        raise SourceEncodingError(
            f"Source is not valid UTF-8 at byte {e.start}: {e.reason}"
        ) from e


def remove_spans(source: bytes, spans: Iterable[ByteRange]) -> bytes:
    """Return ``source`` with every byte covered by ``spans`` removed.

    Bytes outside the spans keep their order and content exactly. The
    result must still be valid UTF-8: a span that cuts through a multi-byte
    character means offsets have drifted, and is reported as an error.
    """
    merged = merge_ranges(spans)
    result = bytearray()
    prev = 0
    total_deleted = 0
    for r in merged:
        if r.end > len(source):
            raise ValueError(f"{r} is out of bounds for {len(source)} bytes")
        total_deleted += len(r)
        result.extend(source[prev : r.start])
        prev = r.end
    result.extend(source[prev:])
    assert len(result) + total_deleted == len(source)
    output = bytes(result)
    decode(output)
    return output


def replace_spans(source: bytes, replacements: dict[ByteRange, bytes]) -> bytes:
    """Rewrite each span to its replacement in one forward pass.

    Spans must not overlap.
    """
    result = bytearray()
    prev = 0
    for r in sorted(replacements):
        if r.start < prev:
            raise ValueError(f"Overlapping replacement at {r}")
        if r.end > len(source):
            raise ValueError(f"{r} is out of bounds for {len(source)} bytes")
        result.extend(source[prev : r.start])
        result.extend(replacements[r])
        prev = r.end
    result.extend(source[prev:])
    output = bytes(result)
    decode(output)
    return output
