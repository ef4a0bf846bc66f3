import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class NavigationStore:
    """
    Remembers which conversation was open across restarts.

    Purely a cache: unreadable or unwritable files are logged and otherwise
    ignored, and callers must validate whatever comes back.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> dict:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("ignoring navigation state at %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            return {}
        selected = data.get("selected_conversation_id")
        return {
            "selected_conversation_id": selected if isinstance(selected, str) else None,
            "creating_new": bool(data.get("creating_new", False)),
        }

    def save(self, selected_conversation_id: str | None, creating_new: bool) -> None:
        payload = {"selected_conversation_id": selected_conversation_id, "creating_new": creating_new}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload), encoding="utf-8")
        except OSError as e:
            logger.warning("could not save navigation state to %s: %s", self.path, e)

