from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

SenderType = Literal["user", "ai", "nurse"]
RiskLevel = Literal["low", "medium", "high"]


class ConversationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    status: str
    created_at: datetime
    updated_at: datetime


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    # str only for optimistic entries that have not been persisted yet
    id: int | str
    conversation_id: str
    sender_id: str | None = None
    sender_type: SenderType
    content: str
    created_at: datetime


class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=4000)


class AIRequest(BaseModel):
    message: str | None = None
    conversation_id: str | None = None
    is_premium: bool = False
    week: int | None = None


class SymptomAnalysis(BaseModel):
    riskLevel: RiskLevel
    causes: list[str] | None = None
    recommendations: list[str] = Field(default_factory=list)


class SymptomCheckRequest(BaseModel):
    message: str | None = None


class AnalysisResponse(BaseModel):
    success: bool = True
    analysis: SymptomAnalysis


class NurseNotifyRequest(BaseModel):
    conversation_id: str | None = None
    message: str | None = None
    user_id: str | None = None
    user_name: str | None = None
