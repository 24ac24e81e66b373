import json
import hmac
import base64
import hashlib
from datetime import datetime, timedelta, timezone
from typing import Optional


# HS256 JWT without external deps
class TokenConfigError(RuntimeError):
    pass


def _b64url_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode()

def _b64url_decode(s: str) -> bytes:
    pad = '=' * (-len(s) % 4)
    return base64.urlsafe_b64decode(s + pad)

def _sign(secret: str, signing_input: bytes) -> str:
    return _b64url_encode(hmac.new(secret.encode(), signing_input, hashlib.sha256).digest())


class TokenCodec:
    """Signs and verifies session tokens carrying an email claim.

    ``verify`` never raises: a missing, malformed, expired or tampered token
    all come back as ``None`` so callers cannot tell the cases apart.
    """

    header = {"alg": "HS256", "typ": "JWT"}

    def __init__(self, secret: str, lifetime: timedelta = timedelta(days=365)):
        if not secret:
            raise TokenConfigError("ACCESS_TOKEN_SECRET is not configured")
        self._secret = secret
        self.lifetime = lifetime

    def __repr__(self) -> str:
        return f"TokenCodec(lifetime={self.lifetime!r})"

    def issue(self, claims: dict, now: Optional[datetime] = None) -> str:
        issued = now or datetime.now(timezone.utc)
        payload = dict(claims)
        payload["iat"] = int(issued.timestamp())
        payload["exp"] = int((issued + self.lifetime).timestamp())
        header_b64 = _b64url_encode(json.dumps(self.header, separators=(',', ':')).encode())
        payload_b64 = _b64url_encode(json.dumps(payload, default=str, separators=(',', ':')).encode())
        signing_input = f"{header_b64}.{payload_b64}".encode()
        return f"{header_b64}.{payload_b64}.{_sign(self._secret, signing_input)}"

    def verify(self, token: Optional[str], now: Optional[datetime] = None) -> Optional[dict]:
        if not token or not isinstance(token, str):
            return None
        try:
            header_b64, payload_b64, sig_b64 = token.split('.')
            signing_input = f"{header_b64}.{payload_b64}".encode()
            if not hmac.compare_digest(_sign(self._secret, signing_input), sig_b64):
                return None
            header = json.loads(_b64url_decode(header_b64))
            payload = json.loads(_b64url_decode(payload_b64))
        except (ValueError, TypeError):
            return None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            return None
        if not isinstance(payload, dict) or not isinstance(payload.get("exp"), (int, float)):
            return None
        current = now or datetime.now(timezone.utc)
        if current.timestamp() >= payload["exp"]:
            return None
        return {k: v for k, v in payload.items() if k not in ("iat", "exp")}
