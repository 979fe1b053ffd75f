"""Path normalization for the folder hierarchy.

A normalized path:

- starts with exactly one delimiter (the root is the bare delimiter),
- has no empty segments and no trailing delimiter,
- has no segment with leading or trailing whitespace,
- contains no control characters and no ``.``/``..`` segments.

``PathPolicy`` bundles the delimiter and the case-sensitivity rule so the
normalizer and the repositories always agree on how paths compare.
"""

import unicodedata
from typing import List, Optional

from folderserver.exceptions import InvalidPathError

DEFAULT_DELIMITER = "/"

_RELATIVE_SEGMENTS = (".", "..")


class PathPolicy:
    """Delimiter and comparison rules for folder paths.

    Args:
        delimiter: Segment separator (a single character)
        case_sensitive: If False, paths that differ only by case address
            the same folder
    """

    def __init__(self, delimiter: str = DEFAULT_DELIMITER, case_sensitive: bool = True):
        if len(delimiter) != 1 or delimiter.isspace():
            raise ValueError(f"Path delimiter must be a single visible character, got {delimiter!r}")
        self.delimiter = delimiter
        self.case_sensitive = case_sensitive

    @property
    def root(self) -> str:
        return self.delimiter

    def normalize(self, raw: Optional[str]) -> str:
        """Canonicalize a user-supplied path.

        Args:
            raw: Path as typed by the user

        Returns:
            Normalized path

        Raises:
            InvalidPathError: If the path is empty after trimming or
                contains disallowed characters
        """
        if raw is None:
            raise InvalidPathError("You need to specify a path")

        trimmed = raw.strip()
        if not trimmed:
            raise InvalidPathError("You need to specify a non-empty path")

        for ch in trimmed:
            if unicodedata.category(ch) == "Cc":
                raise InvalidPathError(f"Path contains a control character: {raw!r}")

        segments = []
        for segment in trimmed.split(self.delimiter):
            segment = segment.strip()
            if not segment:
                continue
            if segment in _RELATIVE_SEGMENTS:
                raise InvalidPathError(f"Relative segment '{segment}' is not allowed in {raw!r}")
            segments.append(segment)

        return self.join_segments(segments)

    def is_normalized(self, path: Optional[str]) -> bool:
        """Check whether a path is already in normalized form."""
        try:
            return self.normalize(path) == path
        except InvalidPathError:
            return False

    def validate_name(self, name: Optional[str]) -> str:
        """Validate a single folder or resource name.

        Returns:
            The name, unchanged

        Raises:
            InvalidPathError: If the name could not be a path segment
        """
        if name is None or not name.strip():
            raise InvalidPathError("Node name must not be empty")
        if name != name.strip():
            raise InvalidPathError(f"Node name must not start or end with whitespace: {name!r}")
        if self.delimiter in name:
            raise InvalidPathError(f"Node name must not contain '{self.delimiter}': {name!r}")
        if name in _RELATIVE_SEGMENTS:
            raise InvalidPathError(f"'{name}' is not a valid node name")
        if any(unicodedata.category(ch) == "Cc" for ch in name):
            raise InvalidPathError(f"Node name contains a control character: {name!r}")
        return name

    def split(self, path: str) -> List[str]:
        """Split a normalized path into its segments (root → [])."""
        return [s for s in path.split(self.delimiter) if s]

    def join_segments(self, segments: List[str]) -> str:
        return self.delimiter + self.delimiter.join(segments)

    def child_path(self, parent_path: str, name: str) -> str:
        """Path of a child named ``name`` under ``parent_path``."""
        if parent_path == self.root:
            return self.root + name
        return parent_path + self.delimiter + name

    def key(self, path: str) -> str:
        """Comparison key used for uniqueness and lookups."""
        return path if self.case_sensitive else path.lower()

    def __repr__(self) -> str:
        return f"PathPolicy(delimiter={self.delimiter!r}, case_sensitive={self.case_sensitive})"


_default_policy = PathPolicy()


def normalize_path(raw: Optional[str]) -> str:
    """Normalize a path with the default policy."""
    return _default_policy.normalize(raw)
