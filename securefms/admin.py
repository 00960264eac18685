from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from securefms import audit
from securefms.blob_store import EncryptedBlobStore
from securefms.database import get_db
from securefms.deps import get_blob_store, get_current_user, get_identities
from securefms.identity import IdentityStore
from securefms.models import User
from securefms.rbac import Permission, rbac
from securefms.schemas import UserCreate, UserOut, UserUpdate

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/create-user", status_code=201)
def create_user(
        data: UserCreate,
        identities: IdentityStore = Depends(get_identities),
        current_user: User = Depends(get_current_user)):
    user = identities.create_user(
        current_user, data.username, data.email, data.role_name, data.password)
    return {"message": "User created successfully", "userId": user.id}


@router.patch("/update-user/{user_id}")
def update_user(
        user_id: int,
        data: UserUpdate,
        identities: IdentityStore = Depends(get_identities),
        current_user: User = Depends(get_current_user)):
    user = identities.update_user(
        current_user, user_id,
        username=data.username, email=data.email,
        role_name=data.role_name, is_active=data.is_active)
    return {"message": "User updated successfully", "user": UserOut.of(user)}


@router.delete("/delete-user/{user_id}")
def delete_user(
        user_id: int,
        identities: IdentityStore = Depends(get_identities),
        store: EncryptedBlobStore = Depends(get_blob_store),
        current_user: User = Depends(get_current_user)):
    identities.delete_user(current_user, user_id, store)
    return {"message": "User and associated files deleted successfully"}


@router.get("/users", response_model=List[UserOut])
def list_users(
        identities: IdentityStore = Depends(get_identities),
        current_user: User = Depends(get_current_user)):
    return [UserOut.of(u) for u in identities.list_users(current_user)]


@router.get("/audit")
def audit_trail(
        db: Session = Depends(get_db),
        current_user: User = Depends(get_current_user)):
    rbac.require(current_user, Permission.VIEW_LOGS)
    return audit.recent(db)
