"""
Typed repositories over the SQLModel tables.

Each repository wraps a session and exposes the get / list / insert /
delete operations the services need. get* methods return None for a
missing row; inserts and deletes commit immediately.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from nas_agent.db.models import NfsShare, NfsSharePermission, User
from nas_agent.errors import ConflictError

logger = logging.getLogger(__name__)


class _Repository:
    def __init__(self, session: Session):
        self.session = session
    
    def _insert(self, record, conflict_message: str):
        self.session.add(record)
        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            logger.warning(f"{conflict_message}: {e.orig}")
            raise ConflictError(conflict_message)
        self.session.refresh(record)
        return record


class UserRepository(_Repository):
    
    def get(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)
    
    def get_by_email(self, email: str) -> Optional[User]:
        return self.session.exec(select(User).where(User.email == email)).first()
    
    def get_by_client_ip(self, nas_client_ip: str) -> Optional[User]:
        return self.session.exec(
            select(User).where(User.nas_client_ip == nas_client_ip)
        ).first()
    
    def list_all(self) -> List[User]:
        return list(self.session.exec(select(User).order_by(User.id)).all())
    
    def insert(self, user: User) -> User:
        return self._insert(user, "User email or NFS client IP already in use")
    
    def delete(self, user_id: int) -> bool:
        user = self.get(user_id)
        if user is None:
            return False
        self.session.delete(user)
        self.session.commit()
        return True


class ShareRepository(_Repository):
    
    def get(self, share_id: int) -> Optional[NfsShare]:
        return self.session.get(NfsShare, share_id)
    
    def get_by_dataset(self, dataset: str) -> Optional[NfsShare]:
        return self.session.exec(
            select(NfsShare).where(NfsShare.dataset == dataset)
        ).first()
    
    def list_by_pool(self, pool: str) -> List[NfsShare]:
        return list(self.session.exec(
            select(NfsShare).where(NfsShare.pool == pool).order_by(NfsShare.id)
        ).all())
    
    def insert(self, share: NfsShare) -> NfsShare:
        return self._insert(share, f"NFS share for '{share.dataset}' already exists")
    
    def delete_by_dataset(self, dataset: str) -> bool:
        """Delete the share for a dataset together with all its permissions."""
        share = self.get_by_dataset(dataset)
        if share is None:
            return False
        permissions = self.session.exec(
            select(NfsSharePermission).where(NfsSharePermission.share_id == share.id)
        ).all()
        for permission in permissions:
            self.session.delete(permission)
        self.session.delete(share)
        self.session.commit()
        return True
    
    def mark_sync_error(self, share: NfsShare, message: str) -> NfsShare:
        share.sync_error = message
        share.sync_failed_at = datetime.now(timezone.utc)
        self.session.add(share)
        self.session.commit()
        self.session.refresh(share)
        return share
    
    def clear_sync_error(self, share: NfsShare) -> NfsShare:
        # Another session may have flagged the row since this one loaded it
        self.session.refresh(share)
        if share.sync_error is None and share.sync_failed_at is None:
            return share
        share.sync_error = None
        share.sync_failed_at = None
        self.session.add(share)
        self.session.commit()
        self.session.refresh(share)
        return share


class PermissionRepository(_Repository):
    
    def get(self, permission_id: int) -> Optional[NfsSharePermission]:
        return self.session.get(NfsSharePermission, permission_id)
    
    def get_for_user(self, share_id: int, user_id: int) -> Optional[NfsSharePermission]:
        return self.session.exec(
            select(NfsSharePermission).where(
                NfsSharePermission.share_id == share_id,
                NfsSharePermission.user_id == user_id,
            )
        ).first()
    
    def list_with_users(self, share_id: int) -> List[Tuple[NfsSharePermission, User]]:
        """All grants on a share joined with their user, oldest grant first."""
        statement = (
            select(NfsSharePermission, User)
            .join(User, User.id == NfsSharePermission.user_id)
            .where(NfsSharePermission.share_id == share_id)
            .order_by(NfsSharePermission.id)
        )
        return [(permission, user) for permission, user in self.session.exec(statement).all()]
    
    def list_by_user(self, user_id: int) -> List[NfsSharePermission]:
        return list(self.session.exec(
            select(NfsSharePermission).where(NfsSharePermission.user_id == user_id)
        ).all())
    
    def insert(self, permission: NfsSharePermission) -> NfsSharePermission:
        return self._insert(permission, "User already has a permission on this share")
    
    def delete(self, permission_id: int) -> bool:
        permission = self.get(permission_id)
        if permission is None:
            return False
        self.session.delete(permission)
        self.session.commit()
        return True
    
    def delete_by_user(self, user_id: int) -> int:
        permissions = self.list_by_user(user_id)
        for permission in permissions:
            self.session.delete(permission)
        self.session.commit()
        return len(permissions)
