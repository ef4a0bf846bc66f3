from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TelegramChat(BaseModel):
    id: int
    type: str = "private"  # private | group | supergroup | channel


class TelegramUser(BaseModel):
    id: int
    username: str | None = None
    first_name: str | None = None


class TelegramMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: int
    chat: TelegramChat
    sender: TelegramUser | None = Field(default=None, alias="from")
    text: str | None = None
    reply_to_message: Optional["TelegramMessage"] = None

    @property
    def is_private(self) -> bool:
        return self.chat.type == "private"


class TelegramUpdate(BaseModel):
    """Only the parts of a Bot API update the nurse relay reacts to."""

    update_id: int
    message: TelegramMessage | None = None
