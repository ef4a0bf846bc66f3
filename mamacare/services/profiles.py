import logging
from datetime import date, datetime, timezone
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mamacare.core.config import settings
from mamacare.core.errors import InvalidRequestError, PersistenceError
from mamacare.models.profile import Profile
from mamacare.services.pregnancy import calculate_due_date

logger = logging.getLogger(__name__)

AVATAR_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}
PATCHABLE_FIELDS = {"email", "full_name", "phone_number", "avatar_url", "lmp_date"}


def get_profile(db: Session, user_id: str) -> Profile | None:
    return db.get(Profile, user_id)


def ensure_profile(
    db: Session,
    user_id: str,
    full_name: str | None = None,
    email: str | None = None,
    lmp_date: date | None = None,
) -> Profile:
    """Returns the user's profile, creating it from sign-up attributes on first use."""
    profile = get_profile(db, user_id)
    if profile:
        return profile
    profile = Profile(
        id=user_id,
        full_name=full_name,
        email=email,
        lmp_date=lmp_date,
        due_date=calculate_due_date(lmp_date) if lmp_date else None,
    )
    db.add(profile)
    _commit(db, "create profile")
    db.refresh(profile)
    return profile


def update_profile(db: Session, user_id: str, patch: dict) -> Profile:
    unknown = set(patch) - PATCHABLE_FIELDS
    if unknown:
        raise InvalidRequestError(f"cannot update fields: {', '.join(sorted(unknown))}")

    profile = ensure_profile(db, user_id)
    for k, v in patch.items():
        setattr(profile, k, v)
    if "lmp_date" in patch:
        profile.due_date = calculate_due_date(patch["lmp_date"]) if patch["lmp_date"] else None
    profile.updated_at = datetime.now(timezone.utc)
    _commit(db, "update profile")
    db.refresh(profile)
    return profile


def activate_premium(db: Session, user_id: str, reference: str | None = None) -> Profile:
    # Payment verification happens at the provider; a success callback is all we get
    profile = ensure_profile(db, user_id)
    profile.is_premium = True
    profile.updated_at = datetime.now(timezone.utc)
    _commit(db, "activate premium")
    db.refresh(profile)
    logger.info("premium activated user=%s reference=%s", user_id, reference or "-")
    return profile


def save_avatar(user_id: str, filename: str, data: bytes) -> str:
    ext = Path(filename or "").suffix.lstrip(".").lower()
    if ext not in AVATAR_EXTENSIONS:
        raise InvalidRequestError("avatar must be an image file (png, jpg, gif, webp)")
    if not data:
        raise InvalidRequestError("avatar file is empty")

    folder = Path(settings.MEDIA_ROOT) / "avatars"
    folder.mkdir(parents=True, exist_ok=True)
    # One avatar per user: a new upload overwrites the previous one
    for old in folder.iterdir():
        # Stem must match exactly: ids may contain dots ("alice" vs "alice.smith")
        if old.is_file() and old.stem == user_id:
            old.unlink()
    (folder / f"{user_id}.{ext}").write_bytes(data)
    return f"{settings.PUBLIC_BASE_URL.rstrip('/')}/media/avatars/{user_id}.{ext}"


def _commit(db: Session, what: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("failed to %s: %s", what, e)
        raise PersistenceError(f"Failed to {what}") from e
