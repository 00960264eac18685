"""Principal lookup, role resolution and account administration."""
from __future__ import annotations

import logging
import re
from typing import List, Optional

from passlib.context import CryptContext
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from securefms import audit
from securefms.errors import (
    AuthenticationError, DuplicateIdentityError, IdentityNotFound, InactiveAccountError,
    ValidationError,
)
from securefms.models import AuditLog, Role, User
from securefms.rbac import RBACResolver, RoleName, parse_role, rbac

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
# min 8 chars, one digit, one special character
PASSWORD_RE = re.compile(r"^(?=.*[0-9])(?=.*[!@#$%^&*])[a-zA-Z0-9!@#$%^&*]{8,}$")


class BcryptHasher:
    def hash(self, password: str) -> str:
        return pwd_context.hash(password)

    def verify(self, password: str, hashed: str) -> bool:
        return pwd_context.verify(password, hashed)


default_hasher = BcryptHasher()


def normalize_identifier(identifier: str) -> str:
    return (identifier or "").strip().lower()


def validate_email(email: str) -> str:
    email = normalize_identifier(email)
    if not EMAIL_RE.match(email):
        raise ValidationError("Invalid email format")
    return email


def validate_password(password: str) -> None:
    if not password or not PASSWORD_RE.match(password):
        raise ValidationError(
            "Password must be at least 8 characters long and contain at least "
            "one number and one special character (!@#$%^&*)")


class IdentityStore:
    def __init__(self, db: Session, hasher=None, resolver: RBACResolver = rbac):
        self.db = db
        self.hasher = hasher or default_hasher
        self.rbac = resolver

    # ───── Lookup ─────

    def get(self, user_id) -> Optional[User]:
        try:
            user_id = int(user_id)
        except (TypeError, ValueError):
            return None
        return self.db.get(User, user_id)

    def require(self, user_id) -> User:
        user = self.get(user_id)
        if user is None:
            raise IdentityNotFound()
        return user

    def get_by_identifier(self, identifier: str) -> Optional[User]:
        ident = normalize_identifier(identifier)
        if not ident:
            return None
        return (
            self.db.query(User)
            .filter(or_(User.email == ident, User.username == ident))
            .order_by(User.id)
            .first()
        )

    def get_role(self, role_name) -> Role:
        name = parse_role(role_name)
        role = self.db.query(Role).filter(Role.name == name.value).first()
        if role is None:
            raise ValidationError("Invalid role")
        return role

    # ───── Passwords ─────

    def _hash(self, password: str) -> str:
        validate_password(password)
        return self.hasher.hash(password)

    def authenticate_password(self, identifier: str, password: str) -> User:
        """Fallback login path; failures are deliberately uninformative."""
        user = self.get_by_identifier(identifier)
        if (user is None or not user.hashed_password
                or not self.hasher.verify(password, user.hashed_password)):
            raise AuthenticationError("Invalid credentials")
        if not user.is_active:
            raise AuthenticationError("Invalid credentials")
        return user

    def check_new_password(self, user: User, new_password: str) -> None:
        validate_password(new_password)
        if user.hashed_password and self.hasher.verify(new_password, user.hashed_password):
            raise ValidationError("New password must be different from the old one")

    def reset_password(self, user: User, new_password: str) -> None:
        if not user.is_active:
            raise InactiveAccountError()
        self.check_new_password(user, new_password)
        user.hashed_password = self._hash(new_password)
        audit.record(self.db, "Password reset", user_id=user.id)
        self.db.commit()

    # ───── Account management ─────

    def _check_unique(self, username: str, email: str, exclude_id=None) -> None:
        # usernames and emails share one identifier namespace
        names = [username, email]
        query = self.db.query(User).filter(
            or_(User.username.in_(names), User.email.in_(names)))
        if exclude_id is not None:
            query = query.filter(User.id != exclude_id)
        if query.first() is not None:
            raise DuplicateIdentityError()

    def _commit(self) -> None:
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise DuplicateIdentityError() from exc

    def _new_user(self, username, email, role: Role, password=None, created_by=None) -> User:
        username = normalize_identifier(username)
        if not username:
            raise ValidationError("Please provide username, email, and role_name")
        email = validate_email(email)
        self._check_unique(username, email)
        user = User(
            username=username,
            email=email,
            hashed_password=self._hash(password) if password else None,
            role=role,
            is_active=True,
            created_by_id=created_by.id if created_by is not None else None,
        )
        self.db.add(user)
        return user

    def register(self, username: str, email: str, password: Optional[str] = None) -> User:
        user = self._new_user(username, email, self.get_role(RoleName.USER), password)
        self.db.flush()
        audit.record(self.db, f"Registered account {user.username}", user_id=user.id)
        self._commit()
        self.db.refresh(user)
        return user

    def create_user(self, actor: User, username: str, email: str, role_name,
                    password: Optional[str] = None) -> User:
        self.rbac.require_admin(actor)
        target_role = self.rbac.require_role_assignment(actor, role_name)
        user = self._new_user(
            username, email, self.get_role(target_role), password, created_by=actor)
        audit.record(
            self.db, f"Created user {user.username} with role {target_role.value}",
            user_id=actor.id)
        self._commit()
        self.db.refresh(user)
        logger.info("User %s created user %s", actor.id, user.id)
        return user

    def update_user(self, actor: User, user_id, username=None, email=None,
                    role_name=None, is_active=None) -> User:
        self.rbac.require_admin(actor)
        user = self.require(user_id)
        self.rbac.require_scope(actor, creator_id=user.created_by_id)

        new_username = normalize_identifier(username) if username else user.username
        new_email = validate_email(email) if email else user.email
        if new_username != user.username or new_email != user.email:
            self._check_unique(new_username, new_email, exclude_id=user.id)
        user.username = new_username
        user.email = new_email

        if role_name:
            user.role = self.get_role(self.rbac.require_role_assignment(actor, role_name))
        if is_active is not None:
            user.is_active = bool(is_active)

        audit.record(self.db, f"Updated user {user.username}", user_id=actor.id)
        self._commit()
        self.db.refresh(user)
        return user

    def delete_user(self, actor: User, user_id, blob_store) -> None:
        """Delete a user and cascade to its files (blobs first, then records)."""
        self.rbac.require_admin(actor)
        user = self.require(user_id)
        if user.id == actor.id:
            raise ValidationError("You cannot delete your own account")
        self.rbac.require_scope(actor, creator_id=user.created_by_id)

        removed = blob_store.purge_owner(user.id)

        self.db.query(User).filter(User.created_by_id == user.id).update(
            {User.created_by_id: None}, synchronize_session=False)
        self.db.query(AuditLog).filter(AuditLog.user_id == user.id).update(
            {AuditLog.user_id: None}, synchronize_session=False)
        username = user.username
        self.db.delete(user)
        audit.record(
            self.db, f"Deleted user {username} and {removed} file(s)", user_id=actor.id)
        self.db.commit()
        logger.info("User %s deleted user %s (%d files)", actor.id, user_id, removed)

    def list_users(self, actor: User) -> List[User]:
        self.rbac.require_admin(actor)
        query = self.db.query(User)
        if self.rbac.role_of(actor) is not RoleName.SUPERADMIN:
            query = query.filter(User.created_by_id == actor.id)
        return query.order_by(User.id).all()
