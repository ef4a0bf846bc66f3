import logging

from mamacare.client.auth import AuthContext
from mamacare.client.gateway import LocalGateway
from mamacare.client.notices import Notice
from mamacare.core.errors import MamaCareError
from mamacare.schemas.chat import SymptomAnalysis

logger = logging.getLogger(__name__)


class SymptomChecker:
    """Symptom check screen state. Tier and week are looked up server side from the profile."""

    def __init__(self, gateway: LocalGateway, auth: AuthContext):
        self.gateway = gateway
        self.auth = auth
        self.analyzing = False
        self.analysis: SymptomAnalysis | None = None
        self.notices: list[Notice] = []

    @property
    def shows_causes(self) -> bool:
        return self.auth.is_premium and bool(self.analysis and self.analysis.causes)

    async def analyze(self, symptoms: str) -> SymptomAnalysis | None:
        symptoms = (symptoms or "").strip()
        if not symptoms or self.analyzing:
            return None
        user_id = self.auth.user_id
        if not user_id:
            self.notices.append(Notice("Not signed in", "Please sign in to check symptoms.", destructive=True))
            return None

        self.analyzing = True
        self.analysis = None
        try:
            self.analysis = await self.gateway.analyze_symptoms(symptoms, user_id)
        except MamaCareError as e:
            logger.warning("symptom check failed user=%s: %s", user_id, e)
            self.notices.append(Notice(
                "Analysis Failed",
                e.message or "Could not get a response from the AI assistant. Please try again later.",
                destructive=True,
            ))
        finally:
            self.analyzing = False
        return self.analysis
