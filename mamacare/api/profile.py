from datetime import date

from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.orm import Session

from mamacare.api.deps import current_user_id
from mamacare.core.db import get_db
from mamacare.core.errors import InvalidRequestError
from mamacare.schemas.profile import PremiumActivation, PregnancyProgress, ProfileOut, ProfilePatch
from mamacare.services import pregnancy, profiles

router = APIRouter(prefix="/profile", tags=["profile"])


@router.get("", response_model=ProfileOut)
def read_profile(user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    return profiles.ensure_profile(db, user_id)


@router.patch("", response_model=ProfileOut)
def patch_profile(
    patch: ProfilePatch,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return profiles.update_profile(db, user_id, patch.model_dump(exclude_unset=True))


@router.post("/avatar", response_model=ProfileOut)
async def upload_avatar(
    file: UploadFile = File(...),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    data = await file.read()
    url = profiles.save_avatar(user_id, file.filename or "", data)
    return profiles.update_profile(db, user_id, {"avatar_url": url})


@router.post("/premium", response_model=ProfileOut)
def premium_callback(
    req: PremiumActivation,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return profiles.activate_premium(db, user_id, reference=req.reference)


@router.get("/pregnancy", response_model=PregnancyProgress)
def pregnancy_progress(user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    profile = profiles.get_profile(db, user_id)
    if not profile or not profile.lmp_date:
        raise InvalidRequestError("Set your last menstrual period date first.")
    today = date.today()
    return PregnancyProgress(
        week=pregnancy.current_week(profile.lmp_date, today),
        days_remaining=pregnancy.days_remaining(profile.lmp_date, today),
        due_date=pregnancy.calculate_due_date(profile.lmp_date),
    )
