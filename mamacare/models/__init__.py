from mamacare.models.conversation import Conversation
from mamacare.models.message import Message
from mamacare.models.operator_session import OperatorNotification, OperatorSession
from mamacare.models.profile import Profile

__all__ = ["Conversation", "Message", "OperatorNotification", "OperatorSession", "Profile"]
