# services/auth.py
import logging
import time

from fastapi import HTTPException
from google.auth.transport import requests
from google.oauth2 import id_token

from schemas.principal import Principal

logger = logging.getLogger("api.auth")

ALLOWED_ISSUERS = {
    "https://accounts.google.com",
    "accounts.google.com",
}


def _unauthorized(error_code: str, message: str) -> HTTPException:
    return HTTPException(status_code=401, detail={"error_code": error_code, "error_message": message})


def principal_from_claims(payload: dict, *, client_id: str, clock_skew_sec: int = 60, now: int | None = None) -> Principal:
    """Check the claims of an already signature-verified Google ID token and map them to a Principal."""
    issuer = str(payload.get("iss") or "").strip()
    if issuer not in ALLOWED_ISSUERS:
        raise _unauthorized("AUTH_INVALID_ISSUER", "Invalid token issuer")

    audience = str(payload.get("aud") or "").strip()
    if audience != client_id:
        raise _unauthorized("AUTH_INVALID_AUDIENCE", "Invalid token audience")

    authorized_party = str(payload.get("azp") or "").strip()
    if authorized_party and authorized_party != client_id:
        raise _unauthorized("AUTH_INVALID_AUTHORIZED_PARTY", "Invalid token authorized party")

    now = int(time.time()) if now is None else int(now)
    exp = int(payload.get("exp") or 0)
    if exp <= now - clock_skew_sec:
        raise _unauthorized("AUTH_TOKEN_EXPIRED", "Token expired")

    nbf = int(payload.get("nbf") or 0)
    if nbf and nbf > now + clock_skew_sec:
        raise _unauthorized("AUTH_TOKEN_NOT_YET_VALID", "Token not valid yet")

    subject = str(payload.get("sub") or "").strip()
    if not subject:
        raise _unauthorized("AUTH_SUBJECT_MISSING", "Subject not found in token")

    email = payload.get("email")
    return Principal(user_id=subject, email=email.lower() if email else None)


class GoogleTokenVerifier:
    """Turns a bearer token into the caller's identity. Identity is the token subject, not the email."""

    def __init__(self, client_id: str, *, clock_skew_sec: int = 60):
        self.client_id = client_id
        self.clock_skew_sec = int(clock_skew_sec)

    def verify(self, token: str) -> Principal:
        if not token:
            raise _unauthorized("AUTH_MISSING_TOKEN", "Missing token")
        if not self.client_id:
            logger.error("auth_not_configured GOOGLE_CLIENT_ID is empty")
            raise _unauthorized("AUTH_NOT_CONFIGURED", "Authentication is not configured")

        try:
            payload = id_token.verify_oauth2_token(token, requests.Request(), self.client_id)
        except ValueError:
            raise _unauthorized("AUTH_INVALID_TOKEN", "Invalid Google token")

        return principal_from_claims(payload, client_id=self.client_id, clock_skew_sec=self.clock_skew_sec)

    def verify_header(self, authorization: str | None) -> Principal:
        if not authorization or not authorization.startswith("Bearer "):
            raise _unauthorized("AUTH_MISSING_AUTH_HEADER", "Missing Authorization header")
        return self.verify(authorization.replace("Bearer ", "", 1).strip())
