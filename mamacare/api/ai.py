from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from mamacare.agents.graph import build_graph
from mamacare.agents.responder import analyze_for_user
from mamacare.api.deps import current_user_id
from mamacare.core.db import get_db
from mamacare.core.errors import ConversationNotFoundError, InvalidRequestError
from mamacare.schemas.chat import AIRequest, AnalysisResponse, SymptomCheckRequest
from mamacare.services.chat_store import get_conversation

router = APIRouter(tags=["ai"])

graph = build_graph()


@router.post("/ai-response")
def ai_response(req: AIRequest, db: Session = Depends(get_db)):
    if not req.message or not req.message.strip():
        raise InvalidRequestError("message is required.")
    # Checked up front so an unknown thread never costs a completion call
    if req.conversation_id and get_conversation(db, req.conversation_id) is None:
        raise ConversationNotFoundError("Conversation not found")

    out = graph.invoke(
        {
            "message": req.message,
            "conversation_id": req.conversation_id,
            "is_premium": req.is_premium,
            "week": req.week,
            "db": db,
            "route": "",
            "response": {},
        }
    )
    return out["response"]


@router.post("/symptom-check", response_model=AnalysisResponse, response_model_exclude_none=True)
def symptom_check(
    req: SymptomCheckRequest,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    analysis = analyze_for_user(db, user_id, req.message or "")
    return AnalysisResponse(analysis=analysis)
