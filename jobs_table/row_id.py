"""
Row identifiers for the grouped jobs table.

A row id is the path from the tree root to a row, written as
``type:value`` segments joined by ``>``, e.g. ``queue:queue-2>job:0``.
"""
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple, Union

ROW_ID_SEPARATOR = ">"
TYPE_VALUE_SEPARATOR = ":"
# encoded value of a null field; string values may not contain it
NULL_VALUE = "\x00"

RowId = str


class InvalidSegmentError(ValueError):
    """Raised when a segment cannot be encoded without ambiguity."""


class MalformedRowIdError(ValueError):
    """Raised when a string does not follow the row id grammar."""


@dataclass(frozen=True)
class RowIdSegment:
    type: str
    value: str

    @property
    def is_null(self) -> bool:
        return self.value == NULL_VALUE


@dataclass(frozen=True)
class RowIdInfo:
    """Decoded row id"""
    row_id: RowId
    segments: List[RowIdSegment]
    path_from_root: List[RowId]

    @property
    def depth(self) -> int:
        return len(self.segments)


SegmentLike = Union[RowIdSegment, Tuple[str, Any]]


def _as_segment(segment: SegmentLike) -> RowIdSegment:
    if isinstance(segment, RowIdSegment):
        return segment
    type_, value = segment
    if value is None:
        return RowIdSegment(type=type_, value=NULL_VALUE)
    value = str(value)
    if NULL_VALUE in value:
        raise InvalidSegmentError(f"Row id segment value {value!r} contains the null marker")
    return RowIdSegment(type=type_, value=value)


def _format_segment(segment: RowIdSegment) -> str:
    if not segment.type:
        raise InvalidSegmentError("Row id segment type must not be empty")
    for part, label in ((segment.type, "type"), (segment.value, "value")):
        for reserved in (ROW_ID_SEPARATOR, TYPE_VALUE_SEPARATOR):
            if reserved in part:
                raise InvalidSegmentError(
                    f"Row id segment {label} {part!r} contains reserved character {reserved!r}"
                )
    return f"{segment.type}{TYPE_VALUE_SEPARATOR}{segment.value}"


def to_row_id(segment: SegmentLike, parent_row_id: Optional[RowId] = None) -> RowId:
    """
    Encode a segment, optionally nested under a parent row id.

    Args:
        segment: A RowIdSegment or a ``(type, value)`` pair. Values are
            converted with ``str()``; ``None`` is written as ``NULL_VALUE``.
        parent_row_id: Row id of the parent row, if any.

    Returns:
        The row id string.

    Raises:
        InvalidSegmentError: if the type is empty or either part contains
            a separator character.
    """
    encoded = _format_segment(_as_segment(segment))
    if parent_row_id:
        return f"{parent_row_id}{ROW_ID_SEPARATOR}{encoded}"
    return encoded


def row_id_from_segments(segments: Iterable[SegmentLike]) -> RowId:
    """Encode a whole root-to-row path."""
    row_id: Optional[RowId] = None
    for segment in segments:
        row_id = to_row_id(segment, row_id)
    if row_id is None:
        raise InvalidSegmentError("Cannot build a row id from an empty path")
    return row_id


def from_row_id(row_id: RowId) -> RowIdInfo:
    """
    Decode a row id into its segments and the ids of every ancestor.

    ``path_from_root[i]`` is the row id made of the first ``i + 1`` segments,
    so the last entry is ``row_id`` itself.
    """
    if not isinstance(row_id, str) or not row_id:
        raise MalformedRowIdError(f"Row id must be a non-empty string, got {row_id!r}")

    segments: List[RowIdSegment] = []
    path_from_root: List[RowId] = []
    for part in row_id.split(ROW_ID_SEPARATOR):
        pieces = part.split(TYPE_VALUE_SEPARATOR)
        if len(pieces) != 2 or not pieces[0]:
            raise MalformedRowIdError(f"Malformed segment {part!r} in row id {row_id!r}")
        segments.append(RowIdSegment(type=pieces[0], value=pieces[1]))
        path_from_root.append(part if not path_from_root else f"{path_from_root[-1]}{ROW_ID_SEPARATOR}{part}")

    return RowIdInfo(row_id=row_id, segments=segments, path_from_root=path_from_root)
