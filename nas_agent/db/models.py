"""
SQLModel tables for users, NFS shares and per-user share permissions.

``UserBase`` carries the public user fields; ``User`` adds the table
columns that must never leave the service (the password hash).
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

ROLE_ADMIN = "ROLE_ADMIN"
ROLE_USER = "ROLE_USER"


class PermissionType(str, Enum):
    READ_ONLY = "r"
    READ_WRITE = "rw"


class UserBase(SQLModel):
    name: str
    email: str = Field(index=True, unique=True)
    nas_client_ip: str = Field(index=True, unique=True)
    role: str = Field(default=ROLE_USER)


class User(UserBase, table=True):
    __tablename__ = "users"
    
    id: Optional[int] = Field(default=None, primary_key=True)
    password_hash: str = Field(default="")
    
    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


class UserPublic(UserBase):
    id: int


class NfsShare(SQLModel, table=True):
    """A dataset exported over NFS. At most one row per dataset."""
    
    __tablename__ = "nfs_shares"
    
    id: Optional[int] = Field(default=None, primary_key=True)
    pool: str = Field(index=True)
    dataset: str = Field(index=True, unique=True)
    # Set when a committed change could not be republished
    sync_error: Optional[str] = Field(default=None)
    sync_failed_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )


class NfsSharePermission(SQLModel, table=True):
    """Read-only or read-write grant of one user on one share."""
    
    __tablename__ = "nfs_share_permissions"
    __table_args__ = (UniqueConstraint("share_id", "user_id"),)
    
    id: Optional[int] = Field(default=None, primary_key=True)
    share_id: int = Field(foreign_key="nfs_shares.id", index=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    permission: str = Field(default=PermissionType.READ_ONLY.value)
