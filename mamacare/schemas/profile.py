from datetime import date, datetime

from pydantic import BaseModel, ConfigDict


class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str | None = None
    full_name: str | None = None
    phone_number: str | None = None
    avatar_url: str | None = None
    lmp_date: date | None = None
    due_date: date | None = None
    is_premium: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ProfilePatch(BaseModel):
    email: str | None = None
    full_name: str | None = None
    phone_number: str | None = None
    avatar_url: str | None = None
    lmp_date: date | None = None


class PremiumActivation(BaseModel):
    reference: str | None = None  # payment provider reference, informational only


class PregnancyProgress(BaseModel):
    week: int
    days_remaining: int
    due_date: date
