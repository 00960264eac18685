from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from securefms.rbac import rbac


def _identifier():
    return Field(validation_alias=AliasChoices("identifier", "email", "username"))


class IdentifierInput(BaseModel):
    identifier: str = _identifier()


class VerifyOTPInput(BaseModel):
    identifier: str = _identifier()
    code: str = Field(validation_alias=AliasChoices("code", "otp"))


class ResetPasswordInput(BaseModel):
    identifier: str = _identifier()
    code: str = Field(validation_alias=AliasChoices("code", "otp"))
    new_password: str


class OTPRequested(BaseModel):
    message: str
    expires_in: int


class RegisterInput(BaseModel):
    username: str
    email: str
    password: Optional[str] = None


class UserSummary(BaseModel):
    id: int
    username: str
    email: str
    role: str
    permissions: List[str]
    is_active: bool

    @classmethod
    def of(cls, user) -> "UserSummary":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role.name,
            permissions=sorted(p.value for p in rbac.permissions_for(user.role.name)),
            is_active=user.is_active,
        )


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserSummary


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    role: str
    is_active: bool
    created_by_id: Optional[int] = None
    created_at: Optional[datetime] = None

    @classmethod
    def of(cls, user) -> "UserOut":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role.name,
            is_active=user.is_active,
            created_by_id=user.created_by_id,
            created_at=user.created_at,
        )


class UserCreate(BaseModel):
    username: str
    email: str
    role_name: str
    password: Optional[str] = None


class UserUpdate(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    role_name: Optional[str] = None
    is_active: Optional[bool] = None


class FileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: int
    original_name: str
    mime_type: str
    size: int
    created_at: datetime
