import logging

from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm

from securefms import audit
from securefms.deps import (
    get_current_user, get_identities, get_otp_manager, get_token_service,
)
from securefms.errors import IdentityNotFound, InactiveAccountError
from securefms.identity import IdentityStore
from securefms.models import User
from securefms.otp import LOGIN, OTPManager
from securefms.schemas import (
    IdentifierInput, OTPRequested, RegisterInput, Token, UserOut, UserSummary, VerifyOTPInput,
)
from securefms.tokens import TokenService

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)

GENERIC_SENT = "If the account exists, a login code has been sent."


def _session_for(user: User, identities: IdentityStore, tokens: TokenService,
                 method: str) -> Token:
    access_token = tokens.mint(user.id, user.role.name)
    audit.record(identities.db, f"Logged in ({method})", user_id=user.id)
    identities.db.commit()
    return Token(access_token=access_token, user=UserSummary.of(user))

# ───── OTP Login ─────


@router.post("/request-otp", response_model=OTPRequested)
def request_otp(
        data: IdentifierInput,
        identities: IdentityStore = Depends(get_identities),
        otp: OTPManager = Depends(get_otp_manager)):
    try:
        otp.issue_challenge(data.identifier, LOGIN, identities)
    except IdentityNotFound:
        logger.info("Login code requested for unknown identifier")
    return OTPRequested(message=GENERIC_SENT, expires_in=otp.policy(LOGIN).ttl)


@router.post("/resend-otp", response_model=OTPRequested)
def resend_otp(
        data: IdentifierInput,
        identities: IdentityStore = Depends(get_identities),
        otp: OTPManager = Depends(get_otp_manager)):
    otp.resend_challenge(data.identifier, LOGIN, identities)
    return OTPRequested(message=GENERIC_SENT, expires_in=otp.policy(LOGIN).ttl)


@router.post("/verify-otp", response_model=Token)
def verify_otp(
        data: VerifyOTPInput,
        identities: IdentityStore = Depends(get_identities),
        otp: OTPManager = Depends(get_otp_manager),
        tokens: TokenService = Depends(get_token_service)):
    principal_id = otp.verify_challenge(data.identifier, LOGIN, data.code)
    user = identities.require(principal_id)
    if not user.is_active:
        raise InactiveAccountError()
    return _session_for(user, identities, tokens, "otp")

# ───── Password fallback ─────


@router.post("/login", response_model=Token)
def login(
        form_data: OAuth2PasswordRequestForm = Depends(),
        identities: IdentityStore = Depends(get_identities),
        tokens: TokenService = Depends(get_token_service)):
    user = identities.authenticate_password(form_data.username, form_data.password)
    return _session_for(user, identities, tokens, "password")

# ───── Register ─────


@router.post("/register", response_model=UserOut, status_code=201)
def register(data: RegisterInput, identities: IdentityStore = Depends(get_identities)):
    user = identities.register(data.username, data.email, data.password)
    return UserOut.of(user)

# ───── Account Info ─────


@router.get("/me", response_model=UserSummary)
def read_users_me(current_user: User = Depends(get_current_user)):
    return UserSummary.of(current_user)
