from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TelegramUser(BaseModel):
    id: int
    is_bot: bool = False
    first_name: str = ""
    last_name: Optional[str] = None
    username: Optional[str] = None


class TelegramChat(BaseModel):
    id: int
    type: str  # private, group, supergroup, channel
    title: Optional[str] = None
    username: Optional[str] = None


class TelegramMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: int
    date: int
    chat: TelegramChat
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")  # "from" is reserved in Python
    text: Optional[str] = None
    caption: Optional[str] = None
    reply_to_message: Optional["TelegramMessage"] = None

    @property
    def replied_text(self) -> Optional[str]:
        """Text (or caption) of the message this one replies to."""
        if not self.reply_to_message:
            return None
        return self.reply_to_message.text or self.reply_to_message.caption


class TelegramCallbackQuery(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    from_user: TelegramUser = Field(alias="from")
    message: Optional[TelegramMessage] = None
    data: Optional[str] = None  # callback_data from button


class TelegramUpdate(BaseModel):
    update_id: int
    message: Optional[TelegramMessage] = None
    callback_query: Optional[TelegramCallbackQuery] = None


class TelegramWebhookResponse(BaseModel):
    ok: bool
    message: Optional[str] = None


class TelegramWebhookInfo(BaseModel):
    webhook_configured: bool
    webhook_url: Optional[str] = None
    pending_updates: int = 0
    last_error: Optional[str] = None
    last_error_date: Optional[int] = None


TelegramMessage.model_rebuild()
