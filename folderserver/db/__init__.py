"""
Database module for the folder server.

Provides SQLAlchemy models, engine initialization and session scopes.
"""

from .models import Base, NodeRecord, UserAccount, Group, NodeGrant, group_members
from .session import database_url, init_db, session_scope

__all__ = [
    'Base',
    'NodeRecord',
    'UserAccount',
    'Group',
    'NodeGrant',
    'group_members',
    'database_url',
    'init_db',
    'session_scope',
]
