import json
import logging
import re
from datetime import date

from pydantic import ValidationError
from sqlalchemy.orm import Session

from mamacare.core.errors import AnalysisParseError, InvalidRequestError
from mamacare.models.message import Message
from mamacare.schemas.chat import SymptomAnalysis
from mamacare.services import profiles
from mamacare.services.chat_store import add_message
from mamacare.services.llm import complete
from mamacare.services.pregnancy import symptom_week

logger = logging.getLogger(__name__)

CHAT_SYSTEM = """You are a helpful and empathetic AI assistant for MamaCare, an app that supports pregnant women in Nigeria.
Provide concise, safe and reassuring advice about pregnancy and maternal health.

Rules (STRICT):
- If a question suggests urgency or high risk (bleeding, severe pain, fainting, reduced baby movement, seizures, high fever),
  tell the user to contact a healthcare professional or call 112 (emergency number) immediately.
- Never provide a medical diagnosis.
- Keep the reply short and in ONE message.
"""

ANALYSIS_PREMIUM = """You are an AI medical assistant for MamaCare. A user, who is {week} pregnancy, is reporting symptoms.
Analyze these symptoms and reply with a JSON object with three keys:
- "riskLevel": one of "low", "medium", "high"
- "causes": array of strings with possible causes
- "recommendations": array of strings with actionable advice
Prioritize safety; if symptoms suggest high risk, set riskLevel to "high" and advise immediate medical attention.
"""

ANALYSIS_BASIC = """You are an AI medical assistant for MamaCare. A user, who is {week} pregnancy, is reporting symptoms.
Provide a limited analysis as a JSON object with two keys:
- "riskLevel": one of "low", "medium", "high"
- "recommendations": an array with a single, concise string of general advice
Recommend upgrading to Premium for details. Do not list causes.
If symptoms suggest high risk, set riskLevel to "high" and advise immediate medical attention.
"""

UPGRADE_TEASER = "Upgrade to MamaCare Premium for possible causes and a personalised action plan."

CHAT_MAX_TOKENS = 250
ANALYSIS_MAX_TOKENS = 400
TEMPERATURE = 0.3

JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def reply_to_chat(db: Session, message: str, conversation_id: str) -> Message:
    """Gets one AI reply for ``message`` and appends it to the conversation."""
    if not message or not message.strip():
        raise InvalidRequestError("message is required for chat.")

    reply = complete(
        CHAT_SYSTEM,
        message,
        max_tokens=CHAT_MAX_TOKENS,
        temperature=TEMPERATURE,
    )
    return add_message(db, conversation_id, "ai", reply)


def _week_phrase(week: int | None) -> str:
    return f"in week {week} of" if week else "in an unknown week of"


def _parse_analysis(text: str) -> dict:
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        # Recovery pass: models sometimes wrap the object in prose or a code fence
        m = JSON_OBJECT_RE.search(text)
        if not m:
            raise AnalysisParseError("Failed to parse analysis response from AI.")
        try:
            data = json.loads(m.group(0))
        except json.JSONDecodeError as e:
            raise AnalysisParseError("Failed to parse analysis response from AI.") from e
    if not isinstance(data, dict):
        raise AnalysisParseError("Analysis response is not an object.")
    return data


def _shape(data: dict, is_premium: bool) -> SymptomAnalysis:
    risk = data.get("riskLevel")
    if isinstance(risk, str):
        data["riskLevel"] = risk.strip().lower()
    recs = data.get("recommendations")
    if isinstance(recs, str):
        data["recommendations"] = [recs]
    causes = data.get("causes")
    if isinstance(causes, str):
        data["causes"] = [causes]

    try:
        analysis = SymptomAnalysis.model_validate(data)
    except ValidationError as e:
        logger.warning("analysis did not match schema: %s", e)
        raise AnalysisParseError("Analysis response has an unexpected shape.") from e

    if is_premium:
        return SymptomAnalysis(
            riskLevel=analysis.riskLevel,
            causes=analysis.causes or [],
            recommendations=analysis.recommendations,
        )
    # Free tier: a single teaser recommendation and never any causes
    first = analysis.recommendations[0] if analysis.recommendations else UPGRADE_TEASER
    return SymptomAnalysis(riskLevel=analysis.riskLevel, recommendations=[first])


def analyze_symptoms(message: str, is_premium: bool = False, week: int | None = None) -> SymptomAnalysis:
    if not message or not message.strip():
        raise InvalidRequestError("message is required for symptom analysis.")

    template = ANALYSIS_PREMIUM if is_premium else ANALYSIS_BASIC
    text = complete(
        template.format(week=_week_phrase(week)),
        message,
        max_tokens=ANALYSIS_MAX_TOKENS,
        temperature=TEMPERATURE,
        json_mode=True,
    )
    return _shape(_parse_analysis(text), is_premium)


def analyze_for_user(db: Session, user_id: str, message: str, today: date | None = None) -> SymptomAnalysis:
    """Symptom check with tier and pregnancy week read from the user's stored profile."""
    profile = profiles.get_profile(db, user_id)
    is_premium = bool(profile and profile.is_premium)
    week = symptom_week(profile.lmp_date if profile else None, today)
    logger.info("symptom check user=%s premium=%s week=%s", user_id, is_premium, week)
    return analyze_symptoms(message, is_premium=is_premium, week=week)
