"""Encrypt-on-write / decrypt-on-read file storage.

Plaintext never reaches a ``BlobBackend``: blobs are ``iv + ciphertext + tag``
produced by ``securefms.crypto``. Metadata rows live in the ``files`` table.
Ordering rules:

* store: blob is written first, the row committed second; a failed commit
  removes the blob again.
* delete: the blob is removed first and the row only after the backend
  confirmed it. A failed removal tombstones the row and surfaces the error.
"""
from __future__ import annotations

import logging
import os
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from securefms import audit
from securefms.crypto import decrypt_bytes, encrypt_bytes
from securefms.errors import (
    AuthorizationError, BlobStorageError, CryptoError, FileNotFound,
    ReferentialIntegrityError, ValidationError,
)
from securefms.models import File, User
from securefms.rbac import Permission, RBACResolver, rbac

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


class BlobBackend(ABC):
    """Opaque byte storage addressed by stored name.

    Implementations raise BlobStorageError on I/O failure. Deleting a name
    that does not exist counts as a successful removal.
    """

    @abstractmethod
    def put(self, name: str, data: bytes) -> None: ...

    @abstractmethod
    def get(self, name: str) -> bytes: ...

    @abstractmethod
    def delete(self, name: str) -> None: ...

    @abstractmethod
    def exists(self, name: str) -> bool: ...

    @abstractmethod
    def ping(self) -> None: ...


def _clean_name(original_name: str) -> str:
    return os.path.basename((original_name or "").replace("\\", "/")).strip()


class EncryptedBlobStore:
    def __init__(self, db: Session, backend: BlobBackend, key: bytes,
                 resolver: RBACResolver = rbac):
        self.db = db
        self.backend = backend
        self._key = key
        self.rbac = resolver

    def _get(self, file_id, include_tombstoned: bool = False) -> File:
        try:
            record = self.db.get(File, int(file_id))
        except (TypeError, ValueError):
            record = None
        if record is None or (record.tombstoned_at is not None and not include_tombstoned):
            raise FileNotFound()
        return record

    def can_read(self, principal: User, record: File) -> bool:
        if principal is None or not principal.is_active:
            return False
        return record.owner_id == principal.id or self.rbac.authorize(
            principal, Permission.VIEW_ALL_FILES)

    # ───── Store ─────

    def store(self, owner_id, original_name: str, mime_type: str, plaintext: bytes) -> File:
        if plaintext is None or not isinstance(plaintext, (bytes, bytearray)):
            raise ValidationError("No file uploaded")
        name = _clean_name(original_name)
        if not name:
            raise ValidationError("A file name is required")

        owner = self.db.get(User, owner_id) if owner_id is not None else None
        if owner is None or not owner.is_active:
            raise ReferentialIntegrityError()
        self.rbac.require(owner, Permission.UPLOAD_FILE)

        stored_name = f"{uuid.uuid4().hex}.bin"
        self.backend.put(stored_name, encrypt_bytes(bytes(plaintext), self._key))

        record = File(
            owner_id=owner.id,
            stored_name=stored_name,
            original_name=name,
            mime_type=mime_type or DEFAULT_MIME_TYPE,
            size=len(plaintext),
            created_at=datetime.utcnow(),
        )
        self.db.add(record)
        audit.record(self.db, f"Uploaded file: {name}", user_id=owner.id)
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self._discard(stored_name)
            raise
        self.db.refresh(record)
        logger.info("Stored file %s (%d bytes) for user %s", record.id, record.size, owner.id)
        return record

    def _discard(self, stored_name: str) -> None:
        try:
            self.backend.delete(stored_name)
        except BlobStorageError as exc:
            logger.error("Could not discard orphan blob %s: %s", stored_name, exc)

    # ───── Retrieve ─────

    def retrieve(self, file_id, principal: User) -> Tuple[File, bytes]:
        record = self._get(file_id)
        if not self.can_read(principal, record):
            raise AuthorizationError()

        blob = self.backend.get(record.stored_name)
        try:
            data = decrypt_bytes(blob, self._key)
        except CryptoError as exc:
            logger.error("Failed to decrypt file %s: %s", record.id, exc)
            raise

        audit.record(self.db, f"Downloaded file: {record.original_name}", user_id=principal.id)
        self.db.commit()
        return record, data

    # ───── Delete ─────

    def _remove_blob(self, record: File) -> None:
        try:
            self.backend.delete(record.stored_name)
        except BlobStorageError as exc:
            record.tombstoned_at = datetime.utcnow()
            self.db.commit()
            logger.error("Blob removal failed for file %s, record tombstoned: %s", record.id, exc)
            raise

    def delete(self, file_id, principal: User) -> None:
        record = self._get(file_id, include_tombstoned=True)
        if record.tombstoned_at is not None and not self.can_read(principal, record):
            # tombstoned files are invisible to anyone who could not see them
            raise FileNotFound()
        is_owner = principal is not None and record.owner_id == principal.id
        needed = Permission.DELETE_OWN_FILE if is_owner else Permission.DELETE_ANY_FILE
        if not self.rbac.authorize(principal, needed):
            raise AuthorizationError()

        self._remove_blob(record)
        name = record.original_name
        self.db.delete(record)
        action = f"Deleted file: {name}" if is_owner else f"ADMIN deleted {name}"
        audit.record(self.db, action, user_id=principal.id)
        self.db.commit()

    def purge_owner(self, owner_id) -> int:
        """Remove every file of ``owner_id``; stops at the first blob failure."""
        records = self.db.query(File).filter(File.owner_id == owner_id).all()
        for record in records:
            self._remove_blob(record)
            self.db.delete(record)
            self.db.commit()
        return len(records)

    # ───── Listing ─────

    def list_for(self, principal: User, all_files: bool = False) -> List[File]:
        query = self.db.query(File).filter(File.tombstoned_at.is_(None))
        if all_files:
            self.rbac.require(principal, Permission.VIEW_ALL_FILES)
        else:
            query = query.filter(File.owner_id == principal.id)
        return query.order_by(File.created_at.desc(), File.id.desc()).all()

    def usage(self, owner_id) -> int:
        total = (
            self.db.query(func.coalesce(func.sum(File.size), 0))
            .filter(File.owner_id == owner_id, File.tombstoned_at.is_(None))
            .scalar()
        )
        return int(total or 0)
