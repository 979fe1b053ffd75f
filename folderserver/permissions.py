"""Per-principal node visibility.

A policy evaluator says which nodes a principal was granted directly
(explicit grants, group grants, ownership). The permission resolver turns
that into the full accessible set: a grant on a folder covers its whole
subtree, and where grants overlap the highest level wins.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List, Optional, TypeVar

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from folderserver.db.models import NodeGrant, NodeRecord, UserAccount
from folderserver.db.session import session_scope
from folderserver.exceptions import RepositoryError
from folderserver.models import AccessLevel, Node, Principal
from folderserver.repository.base import NodeRepository

logger = logging.getLogger(__name__)

PRINCIPAL_USER = "user"
PRINCIPAL_GROUP = "group"

N = TypeVar("N", bound=Node)


class PolicyEvaluator(ABC):
    """Source of direct grants for a principal."""

    @abstractmethod
    def direct_grants(self, principal: Principal) -> Dict[str, AccessLevel]:
        """Node id → level for every node the principal was granted directly."""
        pass


def _merge(target: Dict[str, AccessLevel], node_id: str, level: AccessLevel) -> None:
    current = target.get(node_id)
    if current is None or current < level:
        target[node_id] = level


class StaticGrantPolicy(PolicyEvaluator):
    """In-memory grants, keyed by user id and by group id."""

    def __init__(self):
        self._user_grants: Dict[str, Dict[str, AccessLevel]] = {}
        self._group_grants: Dict[str, Dict[str, AccessLevel]] = {}

    def grant(self, principal_id: str, node_id: str, level: AccessLevel = AccessLevel.READ) -> None:
        _merge(self._user_grants.setdefault(principal_id, {}), node_id, level)

    def grant_group(self, group_id: str, node_id: str, level: AccessLevel = AccessLevel.READ) -> None:
        _merge(self._group_grants.setdefault(group_id, {}), node_id, level)

    def direct_grants(self, principal: Principal) -> Dict[str, AccessLevel]:
        grants = dict(self._user_grants.get(principal.id, {}))
        for group_id in principal.group_ids:
            for node_id, level in self._group_grants.get(group_id, {}).items():
                _merge(grants, node_id, level)
        return grants


class SqlGrantPolicy(PolicyEvaluator):
    """Grants stored in the ``node_grants`` table, plus ownership.

    Owners hold ``write`` on what they own. Group membership is read from
    the database and merged with any groups carried by the principal.

    Args:
        session_factory: Callable returning a new SQLAlchemy session
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def direct_grants(self, principal: Principal) -> Dict[str, AccessLevel]:
        session = self.session_factory()
        try:
            group_ids = set(principal.group_ids)
            user = session.get(UserAccount, principal.id)
            if user is not None:
                group_ids.update(group.id for group in user.groups)

            criteria = [and_(NodeGrant.principal_kind == PRINCIPAL_USER,
                             NodeGrant.principal_id == principal.id)]
            if group_ids:
                criteria.append(and_(NodeGrant.principal_kind == PRINCIPAL_GROUP,
                                     NodeGrant.principal_id.in_(sorted(group_ids))))

            grants: Dict[str, AccessLevel] = {}
            rows = session.execute(select(NodeGrant.node_id, NodeGrant.level).where(or_(*criteria)))
            for node_id, level in rows:
                _merge(grants, node_id, AccessLevel(level))

            owned = session.scalars(select(NodeRecord.id).where(NodeRecord.owner_id == principal.id))
            for node_id in owned:
                _merge(grants, node_id, AccessLevel.WRITE)
            return grants
        except SQLAlchemyError as e:
            logger.exception(f"Failed to read grants for {principal.id}: {e}")
            raise RepositoryError(f"Failed to read grants for {principal.id}: {e}") from e
        finally:
            session.close()

    def grant(self, node_id: str, principal_id: str, level: AccessLevel = AccessLevel.READ,
              principal_kind: str = PRINCIPAL_USER) -> None:
        """Create or replace a grant."""
        if principal_kind not in (PRINCIPAL_USER, PRINCIPAL_GROUP):
            raise ValueError(f"Unknown principal kind: {principal_kind}")
        try:
            with session_scope(self.session_factory) as session:
                existing = self._find_grant(session, node_id, principal_id, principal_kind)
                if existing is None:
                    session.add(NodeGrant(node_id=node_id, principal_id=principal_id,
                                          principal_kind=principal_kind, level=level.value))
                else:
                    existing.level = level.value
        except SQLAlchemyError as e:
            logger.exception(f"Failed to grant {level.value} on {node_id}: {e}")
            raise RepositoryError(f"Failed to grant {level.value} on {node_id}: {e}") from e
        logger.info(f"Granted {level.value} on {node_id} to {principal_kind} {principal_id}")

    def revoke(self, node_id: str, principal_id: str, principal_kind: str = PRINCIPAL_USER) -> bool:
        """Remove a grant. Returns False if there was none."""
        try:
            with session_scope(self.session_factory) as session:
                existing = self._find_grant(session, node_id, principal_id, principal_kind)
                if existing is None:
                    return False
                session.delete(existing)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to revoke grant on {node_id}: {e}") from e
        logger.info(f"Revoked grant on {node_id} from {principal_kind} {principal_id}")
        return True

    @staticmethod
    def _find_grant(session: Session, node_id: str, principal_id: str,
                    principal_kind: str) -> Optional[NodeGrant]:
        return session.scalars(select(NodeGrant).where(
            NodeGrant.node_id == node_id,
            NodeGrant.principal_id == principal_id,
            NodeGrant.principal_kind == principal_kind,
        )).first()

class PermissionResolver:
    """Computes the accessible node set for a principal.

    Args:
        repository: Node repository (for subtrees and the full id list)
        policy: Source of direct grants
    """

    def __init__(self, repository: NodeRepository, policy: PolicyEvaluator):
        self.repository = repository
        self.policy = policy

    def accessible_node_ids(self, principal: Principal) -> Dict[str, AccessLevel]:
        """Every node the principal may access, with its access level.

        Admins get ``write`` on every node. Everyone else gets each granted
        node plus its descendants; overlapping grants keep the highest level.
        Grants on nodes that no longer exist contribute nothing.
        """
        if principal.is_admin:
            return {node_id: AccessLevel.WRITE for node_id in self.repository.iter_node_ids()}

        grants = self.policy.direct_grants(principal)
        accessible: Dict[str, AccessLevel] = {}
        # One subtree expansion per level, strongest first; a node reached at
        # a higher level keeps it.
        for level in sorted(set(grants.values()), reverse=True):
            roots = [node_id for node_id, granted in grants.items()
                     if granted is level and node_id not in accessible]
            for node_id in self.repository.find_subtree_ids_many(roots):
                accessible.setdefault(node_id, level)

        logger.debug(f"Principal {principal.id} can access {len(accessible)} nodes")
        return accessible

    def can_access(self, principal: Principal, node_id: str,
                   level: AccessLevel = AccessLevel.READ,
                   accessible: Optional[Dict[str, AccessLevel]] = None) -> bool:
        """Whether ``principal`` holds at least ``level`` on ``node_id``."""
        if principal.is_admin:
            return True
        if accessible is None:
            accessible = self.accessible_node_ids(principal)
        granted = accessible.get(node_id)
        return granted is not None and granted >= level


def restrict(nodes: Iterable[N], accessible: Dict[str, AccessLevel]) -> List[N]:
    """Keep only nodes whose id is in the accessible set, preserving order."""
    return [node for node in nodes if node.id in accessible]
