from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class MessageKey(BaseModel):
    remoteJid: str = Field(validation_alias=AliasChoices("remoteJid", "remote_jid"))
    fromMe: bool = Field(default=False, validation_alias=AliasChoices("fromMe", "from_me"))
    id: Optional[str] = None


class AudioMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    mimetype: Optional[str] = None
    seconds: Optional[int] = None
    ptt: Optional[bool] = None


class ImageMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    mimetype: Optional[str] = None
    caption: Optional[str] = None


class DocumentMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    mimetype: Optional[str] = None
    fileName: Optional[str] = Field(default=None, validation_alias=AliasChoices("fileName", "file_name"))
    title: Optional[str] = None
    caption: Optional[str] = None


class ExtendedTextMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    text: Optional[str] = None


class MessageContent(BaseModel):
    model_config = ConfigDict(extra="allow")

    conversation: Optional[str] = None
    extendedTextMessage: Optional[ExtendedTextMessage] = None
    audioMessage: Optional[AudioMessage] = None
    imageMessage: Optional[ImageMessage] = None
    documentMessage: Optional[DocumentMessage] = None


class MessageData(BaseModel):
    model_config = ConfigDict(extra="allow")

    key: MessageKey
    pushName: Optional[str] = None
    message: Optional[MessageContent] = None
    messageType: Optional[str] = None
    messageTimestamp: Optional[Any] = None


class WebhookEvent(BaseModel):
    """Evolution API `messages.upsert` webhook body."""

    model_config = ConfigDict(extra="allow")

    event: Optional[str] = None
    instance: Optional[str] = None
    data: Optional[MessageData] = None


class WebhookResponse(BaseModel):
    status: str  # ok, ignored, error
    reason: Optional[str] = None
    message_id: Optional[str] = None
    remaining_seconds: Optional[int] = None
    chunks_sent: int = 0
    media_sent: int = 0
