import re

from fastapi import Header, HTTPException

from mamacare.core.config import settings

_USER_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:@-]{1,63}$")


def _validated(user_id: str) -> str:
    candidate = user_id.strip()
    if not _USER_ID_RE.fullmatch(candidate):
        raise HTTPException(status_code=400, detail="Invalid user id")
    return candidate


def current_user_id(
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
) -> str:
    """
    The identity provider sits in front of this service; what reaches us is
    either a trusted X-User-Id header or the user id as bearer token.
    """
    if x_user_id is not None:
        return _validated(x_user_id)
    raw = (authorization or "").replace("Bearer", "", 1).strip()
    if not raw:
        if settings.ALLOW_ANON:
            return "demo-user"
        raise HTTPException(status_code=401, detail="Missing Authorization")
    return _validated(raw)
