from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship, validates

from securefms.database import Base
from securefms.rbac import Permission, parse_permissions, parse_role


class Role(Base):
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    # comma separated Permission values
    permissions_csv = Column("permissions", Text, nullable=False, default="")
    description = Column(String, default="")

    users = relationship("User", back_populates="role")

    @validates("name")
    def _validate_name(self, key, value):
        return parse_role(value).value

    @property
    def permissions(self):
        if not self.permissions_csv:
            return frozenset()
        return parse_permissions(self.permissions_csv.split(","))

    @permissions.setter
    def permissions(self, values):
        perms = parse_permissions(
            v.value if isinstance(v, Permission) else v for v in values)
        self.permissions_csv = ",".join(sorted(p.value for p in perms))


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=True)
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    role = relationship("Role", back_populates="users", lazy="joined")
    created_by = relationship("User", remote_side=[id])
    files = relationship("File", back_populates="owner")
    logs = relationship("AuditLog", back_populates="user")


class File(Base):
    __tablename__ = "files"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    stored_name = Column(String, unique=True, nullable=False)
    original_name = Column(String, nullable=False)
    mime_type = Column(String, nullable=False, default="application/octet-stream")
    size = Column(Integer, nullable=False)  # plaintext bytes
    created_at = Column(DateTime, default=datetime.utcnow)
    tombstoned_at = Column(DateTime, nullable=True)

    owner = relationship("User", back_populates="files")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String, nullable=False)
    timestamp = Column(DateTime, default=datetime.utcnow)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    user = relationship("User", back_populates="logs")
