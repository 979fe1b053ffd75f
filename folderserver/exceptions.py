"""Error taxonomy for the folder server.

Every failure the engine can produce maps to exactly one of these classes:

    FolderServerError
    ├── ValidationError          client input rejected before any read
    │   ├── InvalidPathError
    │   ├── PathNotNormalizedError
    │   ├── InvalidIdError
    │   ├── InvalidLimitError
    │   ├── InvalidOffsetError
    │   ├── InvalidSortFieldError
    │   └── InvalidNodeTypeError
    ├── HierarchyError
    │   ├── CorruptHierarchyError    invariant violation found while reading
    │   ├── HierarchyViolationError  a mutation would break the tree
    │   └── DuplicatePathError
    ├── RepositoryError          storage / driver failure
    └── AccessDeniedError

A folder that does not exist is not an error: lookups return ``None``.
"""


class FolderServerError(Exception):
    """Base class for all folder server errors."""
    pass


class ValidationError(FolderServerError, ValueError):
    """Client input failed validation."""
    pass


class InvalidPathError(ValidationError):
    """Path is empty or contains disallowed characters."""
    pass


class PathNotNormalizedError(ValidationError):
    """Path is valid but not in its normalized form."""

    def __init__(self, path: str, normalized: str):
        super().__init__(f"The path is not in normalized form: '{path}' (expected '{normalized}')")
        self.path = path
        self.normalized = normalized


class InvalidIdError(ValidationError):
    """Node identifier is missing or blank."""
    pass


class InvalidLimitError(ValidationError):
    """Limit outside of the allowed range."""
    pass


class InvalidOffsetError(ValidationError):
    """Negative offset."""
    pass


class InvalidSortFieldError(ValidationError):
    """Sort field is not one of the known fields."""
    pass


class InvalidNodeTypeError(ValidationError):
    """Type filter is empty or names an unknown node type."""
    pass


class HierarchyError(FolderServerError):
    """Problem with the shape of the folder tree."""
    pass


class CorruptHierarchyError(HierarchyError):
    """Cycle or runaway depth found while walking parent references."""
    pass


class HierarchyViolationError(HierarchyError):
    """Mutation rejected because it would orphan or cycle a node."""
    pass


class DuplicatePathError(HierarchyError):
    """A folder already exists at this path."""
    pass


class RepositoryError(FolderServerError):
    """Underlying store failed (connectivity, query error, timeout)."""
    pass


class AccessDeniedError(FolderServerError):
    """Principal is unknown or not allowed to perform the operation."""
    pass
