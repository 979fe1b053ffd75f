"""Sort specifications for folder content listings.

Sortable fields form a closed set. A field name prefixed with the
descending marker (``-`` by default) reverses that field. Ties are always
broken by node id ascending so repeated listings page deterministically.
"""

from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from folderserver.exceptions import InvalidSortFieldError
from folderserver.models import Node, SortKey

# Field name on the wire -> attribute on Node
SORT_ATTRIBUTES: Dict[str, str] = {
    "name": "name",
    "createdOn": "created_on",
    "modifiedOn": "modified_on",
    "nodeType": "node_type",
}

DEFAULT_SORT_FIELD = "name"


def _sort_value(node: Node, attribute: str):
    value = getattr(node, attribute)
    if attribute == "name":
        return value.casefold()
    if attribute == "node_type":
        return value.value
    return value


class SortOptions:
    """Known sort fields, default field and descending marker.

    Args:
        fields: Allowed field names (subset of ``SORT_ATTRIBUTES``)
        default_field: Field used when the caller gives no sort
        descending_marker: Prefix that reverses a field
    """

    def __init__(
        self,
        fields: Optional[Iterable[str]] = None,
        default_field: str = DEFAULT_SORT_FIELD,
        descending_marker: str = "-",
    ):
        self.fields: Tuple[str, ...] = tuple(fields) if fields is not None else tuple(SORT_ATTRIBUTES)
        unknown = [f for f in self.fields if f not in SORT_ATTRIBUTES]
        if unknown:
            raise ValueError(f"Unsupported sort fields in configuration: {unknown}")
        if default_field not in self.fields:
            raise ValueError(f"Default sort field '{default_field}' is not an allowed field")
        if not descending_marker:
            raise ValueError("Descending marker must not be empty")
        self.default_field = default_field
        self.descending_marker = descending_marker

    def is_known_field(self, name: str) -> bool:
        return name in self.fields

    def parse(self, sort: Optional[str]) -> Tuple[SortKey, ...]:
        """Parse a comma separated sort string.

        Args:
            sort: e.g. ``"name,-createdOn"``; None or blank uses the default

        Returns:
            Tuple of sort keys in priority order

        Raises:
            InvalidSortFieldError: If any entry names an unknown field
        """
        text = (sort or "").strip()
        if not text:
            return (SortKey(self.default_field),)

        keys = []
        for raw in text.split(","):
            entry = raw.strip()
            if not entry:
                continue
            descending = entry.startswith(self.descending_marker)
            name = entry[len(self.descending_marker):] if descending else entry
            if not self.is_known_field(name):
                raise InvalidSortFieldError(
                    f"You passed an illegal sort type: '{entry}'. "
                    f"The allowed values are: {', '.join(self.fields)}"
                )
            keys.append(SortKey(name, descending))

        if not keys:
            return (SortKey(self.default_field),)
        return tuple(keys)

    def format(self, keys: Sequence[SortKey]) -> str:
        return ",".join(key.to_param(self.descending_marker) for key in keys)


def sort_nodes(nodes: Iterable[Node], keys: Sequence[SortKey]) -> List[Node]:
    """Sort nodes by ``keys`` with id ascending as the final tie breaker."""
    ordered = sorted(nodes, key=lambda n: n.id)
    # Stable multi-pass sort: least significant key first
    for key in reversed(keys):
        attribute = SORT_ATTRIBUTES[key.field]
        ordered.sort(key=_attribute_getter(attribute), reverse=key.descending)
    return ordered


def _attribute_getter(attribute: str) -> Callable[[Node], object]:
    return lambda node: _sort_value(node, attribute)
