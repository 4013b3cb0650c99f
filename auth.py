from dataclasses import dataclass
from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings

ASSERTION_MAX_AGE_SECS = 300


class AuthError(ValueError):
    pass


@dataclass(frozen=True)
class Identity:
    uid: str
    email: Optional[str] = None


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.auth_secret, salt="session-token")


def _assertion_serializer(secret: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret, salt="identity-assertion")


def issue_token(uid: str, email: Optional[str] = None, email_verified: bool = False) -> str:
    if not email_verified:
        raise AuthError("Email address is not verified")
    return _serializer().dumps({"u": uid, "e": email})


def verify_token(token: str, max_age_hours: Optional[int] = None) -> Identity:
    hours = (
        get_settings().auth_max_age_hours if max_age_hours is None else max_age_hours
    )
    try:
        data = _serializer().loads(token, max_age=hours * 3600)
    except SignatureExpired as exc:
        raise AuthError("Session expired") from exc
    except BadSignature as exc:
        raise AuthError("Invalid session token") from exc

    uid = data.get("u") if isinstance(data, dict) else None
    if not uid:
        raise AuthError("Invalid session token")
    return Identity(uid=uid, email=data.get("e"))


def sign_identity_assertion(
    uid: str, email: Optional[str], email_verified: bool, *, secret: str
) -> str:
    """Signed statement of who the user is, produced by the identity provider."""
    return _assertion_serializer(secret).dumps(
        {"uid": uid, "email": email, "email_verified": email_verified}
    )


def exchange_identity_assertion(assertion: str) -> str:
    """Trade a provider assertion signed with ``identity_secret`` for a session token."""
    secret = get_settings().identity_secret
    if not secret:
        raise AuthError("Identity provider is not configured")
    try:
        data = _assertion_serializer(secret).loads(
            assertion, max_age=ASSERTION_MAX_AGE_SECS
        )
    except SignatureExpired as exc:
        raise AuthError("Identity assertion expired") from exc
    except BadSignature as exc:
        raise AuthError("Invalid identity assertion") from exc

    if not isinstance(data, dict) or not data.get("uid"):
        raise AuthError("Invalid identity assertion")
    return issue_token(data["uid"], data.get("email"), bool(data.get("email_verified")))
