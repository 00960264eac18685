"""Process-wide services and the FastAPI dependencies that hand them out."""
import logging
import os
from functools import lru_cache

from dotenv import load_dotenv
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from securefms.blob_store import BlobBackend, EncryptedBlobStore
from securefms.database import get_db
from securefms.identity import IdentityStore
from securefms.models import User
from securefms.otp import ChallengeReaper, InMemoryChallengeStore, OTPManager
from securefms.tokens import TokenService
from securefms.utils.email_utils import EmailNotifier
from securefms.utils.key_manager import load_file_encryption_key, load_signing_keys

load_dotenv()

logger = logging.getLogger(__name__)

# ───── Shared state (read-only secrets, OTP store) ─────
FILE_ENCRYPTION_KEY = load_file_encryption_key()

challenge_store = InMemoryChallengeStore()
otp_manager = OTPManager(challenge_store, EmailNotifier())
reaper = ChallengeReaper(
    challenge_store, interval=float(os.getenv("OTP_REAPER_INTERVAL", "60")))
token_service = TokenService(load_signing_keys())

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")


@lru_cache(maxsize=1)
def get_blob_backend() -> BlobBackend:
    backend = os.getenv("BLOB_BACKEND", "local").lower()
    if backend == "s3":
        from securefms.utils.s3_utils import s3_backend_from_env
        return s3_backend_from_env()
    if backend == "local":
        from securefms.utils.local_storage import LocalBlobBackend
        return LocalBlobBackend(os.getenv("BLOB_STORAGE_PATH", "./storage/blobs"))
    raise RuntimeError(f"Unsupported BLOB_BACKEND '{backend}'")


def get_otp_manager() -> OTPManager:
    return otp_manager


def get_token_service() -> TokenService:
    return token_service


def get_identities(db: Session = Depends(get_db)) -> IdentityStore:
    return IdentityStore(db)


def get_blob_store(
        db: Session = Depends(get_db),
        backend: BlobBackend = Depends(get_blob_backend)) -> EncryptedBlobStore:
    return EncryptedBlobStore(db, backend, FILE_ENCRYPTION_KEY)


def get_current_user(
        token: str = Depends(oauth2_scheme),
        identities: IdentityStore = Depends(get_identities),
        tokens: TokenService = Depends(get_token_service)) -> User:
    return tokens.validate(token, identities)
