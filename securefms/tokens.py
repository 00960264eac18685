import logging
import os
from datetime import datetime, timedelta
from typing import List, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from securefms.errors import TokenExpired, TokenMalformed, TokenRevoked
from securefms.models import User
from securefms.rbac import parse_role
from securefms.utils.key_manager import key_id

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))


class TokenService:
    """Signed, time-boxed bearer tokens.

    ``signing_keys[0]`` signs new tokens; every key in the list verifies, so
    the previous secret keeps working during a rotation overlap.
    """

    def __init__(self, signing_keys: List[str], ttl: Optional[timedelta] = None):
        if not signing_keys:
            raise RuntimeError("At least one signing key is required")
        self._keys = {key_id(k): k for k in signing_keys}
        self._current_kid = key_id(signing_keys[0])
        self.ttl = ttl or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    def mint(self, principal_id, role_name, ttl: Optional[timedelta] = None,
             now: Optional[datetime] = None) -> str:
        issued = now or datetime.utcnow()
        expire = issued + (ttl or self.ttl)
        claims = {
            "sub": str(principal_id),
            "role": parse_role(role_name).value,
            "iat": issued,
            "exp": expire,
        }
        return jwt.encode(
            claims, self._keys[self._current_kid], algorithm=ALGORITHM,
            headers={"kid": self._current_kid})

    def decode(self, token: str) -> dict:
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise TokenMalformed() from exc
        secret = self._keys.get(header.get("kid"))
        if secret is None:
            raise TokenMalformed()
        try:
            return jwt.decode(
                token, secret, algorithms=[ALGORITHM],
                options={"require_exp": True, "require_sub": True})
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JWTError as exc:
            raise TokenMalformed() from exc

    def validate(self, token: str, identities) -> User:
        """Verify the token and re-check the principal against the live store."""
        claims = self.decode(token)
        user = identities.get(claims.get("sub"))
        if user is None or not user.is_active:
            logger.info("Rejected token for missing or inactive user %s", claims.get("sub"))
            raise TokenRevoked()
        if user.role.name != claims.get("role"):
            logger.info("Rejected token for user %s: role changed", user.id)
            raise TokenRevoked()
        return user
