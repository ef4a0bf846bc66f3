from typing import TypedDict
from langgraph.graph import StateGraph, END
from sqlalchemy.orm import Session

from mamacare.agents.responder import analyze_symptoms, reply_to_chat


class ResponderState(TypedDict):
    message: str
    conversation_id: str | None
    is_premium: bool
    week: int | None
    route: str
    response: dict
    db: Session


def router_node(state: ResponderState):
    # A conversation id means chat; without one the request is a symptom check
    state["route"] = "chat" if state.get("conversation_id") else "analysis"
    return state


def chat_node(state: ResponderState):
    reply_to_chat(state["db"], state["message"], state["conversation_id"])
    state["response"] = {"success": True}
    return state


def analysis_node(state: ResponderState):
    analysis = analyze_symptoms(
        state["message"],
        is_premium=bool(state.get("is_premium")),
        week=state.get("week"),
    )
    state["response"] = {"success": True, "analysis": analysis.model_dump(exclude_none=True)}
    return state


def build_graph():
    g = StateGraph(ResponderState)
    g.add_node("router", router_node)
    g.add_node("chat", chat_node)
    g.add_node("analysis", analysis_node)

    g.set_entry_point("router")
    g.add_conditional_edges(
        "router",
        lambda s: s["route"],
        {"chat": "chat", "analysis": "analysis"},
    )

    g.add_edge("chat", END)
    g.add_edge("analysis", END)

    return g.compile()
