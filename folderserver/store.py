"""
Database-backed folder store.

Opens (or creates) a store and wires the repository, the grant policy and
the folder contents service together.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from sqlalchemy.orm import sessionmaker

from .config import FolderServerConfig
from .db.session import init_db
from .models import AccessLevel, Folder, Principal
from .permissions import PRINCIPAL_USER, SqlGrantPolicy
from .repository.sql import SqlNodeRepository
from .service import FolderContentsService
from .users import UserService

logger = logging.getLogger(__name__)


class FolderStore:
    """
    A folder hierarchy persisted in a database.

    Usage:
        store = FolderStore.open("/path/to/store")
        studies = store.repository.create_folder(store.root.id, "studies")
        principal = store.principal("alice")
        listing = store.service.contents_by_path(principal, "/studies", "template,folder")
        store.close()
    """

    def __init__(self, location: Union[str, Path], engine, config: FolderServerConfig):
        self.location = location
        self.engine = engine
        self.config = config
        self.session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        self.path_policy = config.paths.policy()
        self.repository = SqlNodeRepository(self.session_factory, self.path_policy, config.store.id_prefix)
        self.policy = SqlGrantPolicy(self.session_factory)
        self.service = FolderContentsService(
            self.repository,
            self.policy,
            sort_options=config.listing.sort_options(),
            default_limit=config.listing.default_limit,
            max_limit=config.listing.max_limit,
        )
        self._root = self.repository.create_root()

    @classmethod
    def open(cls, location: Union[str, Path], config: Optional[FolderServerConfig] = None,
             echo: bool = False) -> 'FolderStore':
        """
        Open or create a store.

        Args:
            location: Store directory or database URL
            config: Configuration, defaults to built-in defaults
            echo: If True, log all SQL statements

        Returns:
            FolderStore instance
        """
        engine = init_db(location, echo=echo)
        store = cls(location, engine, config or FolderServerConfig())
        logger.info(f"Opened folder store at {location}")
        return store

    def close(self):
        """Release database connections."""
        self.engine.dispose()
        logger.info("Closed folder store")

    @property
    def root(self) -> Folder:
        return self._root

    @contextmanager
    def users(self) -> Iterator[UserService]:
        """User service bound to a fresh session."""
        session = self.session_factory()
        try:
            yield UserService(session)
        finally:
            session.close()

    def principal(self, user_id: str) -> Optional[Principal]:
        """Principal for a registered user, or None if unknown."""
        with self.users() as users:
            return users.principal_for(user_id)

    def grant(self, node_id: str, principal_id: str, level: AccessLevel = AccessLevel.READ,
              principal_kind: str = PRINCIPAL_USER) -> None:
        self.policy.grant(node_id, principal_id, level, principal_kind)
