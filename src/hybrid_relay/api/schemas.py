"""Request bodies accepted by the webhooks."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class TelegramUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int


class TelegramChat(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int


class TelegramFile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    file_id: str


class TelegramMessage(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    message_id: int
    chat: TelegramChat
    from_user: TelegramUser | None = Field(default=None, alias="from")
    text: str | None = None
    caption: str | None = None
    message_thread_id: int | None = None
    voice: TelegramFile | None = None
    audio: TelegramFile | None = None
    photo: list[TelegramFile] = Field(default_factory=list)


class TelegramCallbackQuery(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    from_user: TelegramUser = Field(alias="from")
    data: str | None = None
    message: TelegramMessage | None = None


class TelegramUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    update_id: int
    message: TelegramMessage | None = None
    callback_query: TelegramCallbackQuery | None = None


class TranscriptTurn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: str = "unknown"
    message: str | None = None


class CallWebhook(BaseModel):
    model_config = ConfigDict(extra="ignore")

    conversation_id: str = Field(min_length=1)
    status: str = ""
    transcript: list[TranscriptTurn] = Field(default_factory=list)
    chat_id: str | None = None

    def transcript_text(self) -> str:
        return "\n".join(
            f"{turn.role}: {turn.message}" for turn in self.transcript if turn.message
        )
