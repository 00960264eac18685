import logging

from fastapi import APIRouter, Depends

from securefms.deps import get_identities, get_otp_manager
from securefms.errors import IdentityNotFound, InactiveAccountError
from securefms.identity import IdentityStore, validate_password
from securefms.otp import PASSWORD_RESET, OTPManager
from securefms.schemas import IdentifierInput, OTPRequested, ResetPasswordInput

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


@router.post("/forgot-password", response_model=OTPRequested)
def forgot_password(
        data: IdentifierInput,
        identities: IdentityStore = Depends(get_identities),
        otp: OTPManager = Depends(get_otp_manager)):
    try:
        otp.issue_challenge(data.identifier, PASSWORD_RESET, identities)
    except (IdentityNotFound, InactiveAccountError):
        logger.info("Password reset requested for unknown or inactive identifier")
    return OTPRequested(
        message="If this account is registered, you will receive a reset code.",
        expires_in=otp.policy(PASSWORD_RESET).ttl)


@router.post("/reset-password")
def reset_password(
        data: ResetPasswordInput,
        identities: IdentityStore = Depends(get_identities),
        otp: OTPManager = Depends(get_otp_manager)):
    # every password check runs before the single-use code is spent
    validate_password(data.new_password)
    candidate = identities.get_by_identifier(data.identifier)
    if candidate is not None:
        if not candidate.is_active:
            raise InactiveAccountError()
        identities.check_new_password(candidate, data.new_password)

    principal_id = otp.verify_challenge(data.identifier, PASSWORD_RESET, data.code)
    identities.reset_password(identities.require(principal_id), data.new_password)
    return {"message": "Password reset successfully"}
