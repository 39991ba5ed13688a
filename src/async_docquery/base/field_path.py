# src/async_docquery/base/field_path.py

import logging
import re
from typing import Iterable, Tuple, Union

from .exceptions import InvalidArgumentError

log = logging.getLogger(__name__)

# Characters that may not appear in a dot-separated field path string.
_INVALID_DOTTED_CHARS = re.compile(r"[~*/\[\]]")
# Segments matching this may be sent unquoted; anything else is backtick-quoted.
_SIMPLE_SEGMENT = re.compile(r"^[_a-zA-Z][_a-zA-Z0-9]*$")

DOCUMENT_ID_WIRE_NAME = "__name__"


class FieldPath:
    """
    An immutable path to a field within a document.

    A path is a tuple of non-empty segments, so ``FieldPath("a", "b")`` refers to
    field ``b`` inside map ``a``. The reserved document-identity pseudo-field is
    available as :data:`DOCUMENT_ID`; it is equal only to itself, never to a
    path built from segments.
    """

    __slots__ = ("_segments", "_is_document_id")

    def __init__(self, *segments: str):
        if not segments:
            raise InvalidArgumentError("A field path must have at least one segment.")
        for segment in segments:
            if not isinstance(segment, str) or not segment:
                raise InvalidArgumentError(
                    f"Field path segments must be non-empty strings, got {segment!r}."
                )
        object.__setattr__(self, "_segments", tuple(segments))
        object.__setattr__(self, "_is_document_id", False)

    @classmethod
    def _document_id(cls) -> "FieldPath":
        marker = object.__new__(cls)
        object.__setattr__(marker, "_segments", (DOCUMENT_ID_WIRE_NAME,))
        object.__setattr__(marker, "_is_document_id", True)
        return marker

    @staticmethod
    def document_id() -> "FieldPath":
        """Returns the document-identity marker path."""
        return DOCUMENT_ID

    @classmethod
    def from_dot_separated(cls, path: str) -> "FieldPath":
        """Parses ``"a.b.c"`` into a three-segment path."""
        if not isinstance(path, str) or not path:
            raise InvalidArgumentError("A field path string must be non-empty.")
        if _INVALID_DOTTED_CHARS.search(path):
            raise InvalidArgumentError(
                f"Field path {path!r} contains one of the reserved characters '~*/[]'."
            )
        segments = path.split(".")
        if any(not segment for segment in segments):
            raise InvalidArgumentError(
                f"Field path {path!r} contains an empty segment."
            )
        log.debug(f"Parsed dotted field path {path!r} into segments {segments}")
        return cls(*segments)

    @classmethod
    def coerce(cls, path: Union[str, "FieldPath"]) -> "FieldPath":
        """Accepts either a dotted string or an existing FieldPath."""
        if isinstance(path, FieldPath):
            return path
        if isinstance(path, str):
            return cls.from_dot_separated(path)
        if path is None:
            raise InvalidArgumentError("A field path must not be None.")
        raise InvalidArgumentError(
            f"Expected a str or FieldPath, got {type(path).__name__}."
        )

    @property
    def segments(self) -> Tuple[str, ...]:
        return self._segments

    @property
    def is_document_id(self) -> bool:
        return self._is_document_id

    def to_api_string(self) -> str:
        """Encodes the path for the wire, quoting non-identifier segments."""
        if self._is_document_id:
            return DOCUMENT_ID_WIRE_NAME
        return ".".join(_encode_segment(s) for s in self._segments)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FieldPath):
            return NotImplemented
        return (
            self._is_document_id == other._is_document_id
            and self._segments == other._segments
        )

    def __hash__(self) -> int:
        return hash((self._is_document_id, self._segments))

    def __setattr__(self, name, value):
        raise AttributeError("FieldPath objects are immutable.")

    def __str__(self) -> str:
        return self.to_api_string()

    def __repr__(self) -> str:
        if self._is_document_id:
            return "FieldPath.document_id()"
        args = ", ".join(repr(s) for s in self._segments)
        return f"FieldPath({args})"


def _encode_segment(segment: str) -> str:
    if _SIMPLE_SEGMENT.match(segment):
        return segment
    escaped = segment.replace("\\", "\\\\").replace("`", "\\`")
    return f"`{escaped}`"


def field_paths(paths: Iterable[Union[str, FieldPath]]) -> Tuple[FieldPath, ...]:
    """Coerces each item of ``paths`` to a FieldPath."""
    return tuple(FieldPath.coerce(p) for p in paths)


DOCUMENT_ID = FieldPath._document_id()
