"""Node repository: the engine's only data dependency.

- NodeRepository: abstract capability the engine reads through
- InMemoryNodeRepository: dict-backed adapter
- SqlNodeRepository: SQLAlchemy adapter
"""

from folderserver.repository.base import MAX_TREE_DEPTH, NodeRepository, walk_ancestors
from folderserver.repository.memory import InMemoryNodeRepository
from folderserver.repository.sql import SqlNodeRepository

__all__ = [
    "NodeRepository",
    "InMemoryNodeRepository",
    "SqlNodeRepository",
    "walk_ancestors",
    "MAX_TREE_DEPTH",
]
