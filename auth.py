import logging
import time
from typing import Optional, Union

from fastapi import Request, Response
from itsdangerous import BadSignature, URLSafeSerializer, URLSafeTimedSerializer
from sqlalchemy.orm import Session

from config import ConfigurationError, get_settings
from models import User
from services import CurrentUser, UserService

logger = logging.getLogger(__name__)

SESSION_COOKIE = "expenses_session"
ANONYMOUS = "anon"


def _session_serializer() -> URLSafeTimedSerializer:
    secret = get_settings().require_session_secret()
    return URLSafeTimedSerializer(secret, salt="session")


def _csrf_serializer() -> URLSafeSerializer:
    secret = get_settings().require_session_secret()
    return URLSafeSerializer(secret, salt="csrf-token")


def get_current_user(request: Request, db: Session) -> Optional[CurrentUser]:
    """Resolve the signed-in user from the session cookie, or ``None``."""
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        return None
    settings = get_settings()
    try:
        data = _session_serializer().loads(
            token, max_age=settings.session_max_age_hours * 3600
        )
    except ConfigurationError:
        return None
    except BadSignature:
        logger.info("session_rejected: reason=bad_signature")
        return None
    user_id = data.get("uid") if isinstance(data, dict) else None
    if not isinstance(user_id, int):
        return None
    user = UserService(db).get(user_id)
    if not user:
        return None
    return CurrentUser.from_model(user)


def sign_in(response: Response, user: User) -> None:
    settings = get_settings()
    token = _session_serializer().dumps({"uid": user.id})
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=settings.session_max_age_hours * 3600,
        httponly=True,
        samesite="lax",
    )
    logger.info(f"signed_in: user_id={user.id}")


def sign_out(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE)


def _csrf_subject(user: Optional[CurrentUser]) -> Union[int, str]:
    return user.id if user else ANONYMOUS


def generate_csrf_token(
    user: Optional[CurrentUser] = None, max_age_hours: int = 2
) -> str:
    if not get_settings().is_configured:
        return ""
    timestamp = int(time.time())
    expiry = timestamp + (max_age_hours * 3600)
    token_data = {"u": _csrf_subject(user), "ts": timestamp, "exp": expiry}
    return _csrf_serializer().dumps(token_data)


def validate_csrf_token(token: str, user: Optional[CurrentUser] = None) -> bool:
    if not token or not get_settings().is_configured:
        return False
    try:
        data = _csrf_serializer().loads(token)
    except BadSignature:
        return False

    if data.get("u") != _csrf_subject(user):
        return False

    if int(time.time()) > data.get("exp", 0):
        return False

    return True
