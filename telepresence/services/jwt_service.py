import base64
import os
from binascii import Error as BinasciiError
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError


class JWTAuthService:
    """Decodes the bearer tokens presented by robots, drivers and admins."""

    def __init__(self):
        self.algorithm = os.getenv("JWT_ALGORITHM", "HS256")
        self.secret = os.getenv("JWT_SECRET") or os.getenv("SECRET_KEY")
        self.public_key = self._load_key(os.getenv("JWT_CERTIFICATE"))

    def _verification_key(self) -> str:
        if self.algorithm.startswith("HS"):
            if not self.secret:
                raise RuntimeError("JWT_SECRET/SECRET_KEY is not configured")
            return self.secret
        if not self.public_key:
            raise RuntimeError("JWT_CERTIFICATE is not configured")
        return self.public_key

    def decode_token(self, token: str) -> Dict[str, Any]:
        return jwt.decode(token, self._verification_key(), algorithms=[self.algorithm])

    def try_decode(self, token: str) -> Optional[Dict[str, Any]]:
        try:
            return self.decode_token(token)
        except (JWTError, ExpiredSignatureError, RuntimeError):
            return None

    @staticmethod
    def subject(payload: Optional[Dict[str, Any]]) -> Optional[str]:
        if not payload:
            return None
        sub = payload.get("sub")
        return str(sub) if sub is not None else None

    @staticmethod
    def is_admin(payload: Optional[Dict[str, Any]]) -> bool:
        return bool(payload and payload.get("admin"))

    @classmethod
    def has_role(cls, payload: Optional[Dict[str, Any]], role: str) -> bool:
        """True when the token carries ``role`` in its ``role`` or ``roles`` claim; admins pass."""
        if not payload:
            return False
        roles = payload.get("roles") or []
        return payload.get("role") == role or role in roles or cls.is_admin(payload)

    def _load_key(self, raw_value: str | None) -> str | None:
        """Accept a PEM public key as raw text or base64-encoded."""
        if not raw_value:
            return raw_value
        if "BEGIN" in raw_value and "END" in raw_value:
            return raw_value
        try:
            return base64.b64decode(raw_value).decode("utf-8")
        except (BinasciiError, UnicodeDecodeError):
            return raw_value
