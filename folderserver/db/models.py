"""
SQLAlchemy models for the folder server database.

Nodes form a single tree through ``parent_id``. Folders additionally carry
their full path and a comparison key (``path_key``) that is unique across
the store; leaf resources leave both empty.
"""

from datetime import datetime

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Table, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


group_members = Table(
    'group_members',
    Base.metadata,
    Column('group_id', String(255), ForeignKey('groups.id', ondelete='CASCADE'), primary_key=True),
    Column('user_id', String(255), ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
    Column('created_at', DateTime, default=datetime.utcnow)
)


class NodeRecord(Base):
    """A folder or leaf resource."""
    __tablename__ = 'nodes'

    id = Column(String(255), primary_key=True)
    node_type = Column(String(20), nullable=False, index=True)  # folder, template, element, ...
    name = Column(String(500), nullable=False)
    name_key = Column(String(500), nullable=False)  # casefolded name, the sort key for name ordering
    description = Column(Text)
    owner_id = Column(String(255), index=True)
    parent_id = Column(String(255), ForeignKey('nodes.id', ondelete='CASCADE'))

    # Folders only
    path = Column(String(4000))
    path_key = Column(String(4000), unique=True)  # path, lowercased when paths are case-insensitive

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index('idx_node_parent_type', 'parent_id', 'node_type'),
    )

    def __repr__(self):
        return f"<NodeRecord(id='{self.id}', type='{self.node_type}', name='{self.name}')>"


class UserAccount(Base):
    """Known principal."""
    __tablename__ = 'users'

    id = Column(String(255), primary_key=True)
    display_name = Column(String(200), nullable=False, index=True)
    email = Column(String(320))
    is_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    groups = relationship('Group', secondary=group_members, back_populates='members')

    def __repr__(self):
        return f"<UserAccount(id='{self.id}', display_name='{self.display_name}')>"


class Group(Base):
    """Named set of users that can receive grants together."""
    __tablename__ = 'groups'

    id = Column(String(255), primary_key=True)
    name = Column(String(200), nullable=False, unique=True, index=True)
    description = Column(Text)

    members = relationship('UserAccount', secondary=group_members, back_populates='groups')

    def __repr__(self):
        return f"<Group(id='{self.id}', name='{self.name}')>"


class NodeGrant(Base):
    """Permission on a node for a user or a group. Folder grants cover the subtree."""
    __tablename__ = 'node_grants'

    id = Column(Integer, primary_key=True)
    node_id = Column(String(255), ForeignKey('nodes.id', ondelete='CASCADE'), nullable=False)
    principal_id = Column(String(255), nullable=False)
    principal_kind = Column(String(10), nullable=False, default='user')  # user, group
    level = Column(String(10), nullable=False)  # read, write
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('node_id', 'principal_id', 'principal_kind', name='uix_node_grant'),
        Index('idx_grant_principal', 'principal_kind', 'principal_id'),
    )

    def __repr__(self):
        return f"<NodeGrant(node_id='{self.node_id}', {self.principal_kind}='{self.principal_id}', level='{self.level}')>"
