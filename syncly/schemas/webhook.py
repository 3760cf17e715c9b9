from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class MetaParty(BaseModel):
    id: str
    name: Optional[str] = None
    username: Optional[str] = None


class MetaAttachmentPayload(BaseModel):
    url: Optional[str] = None


class MetaAttachment(BaseModel):
    type: str
    payload: Optional[MetaAttachmentPayload] = None


class MetaQuickReply(BaseModel):
    payload: str


class MetaMessage(BaseModel):
    mid: Optional[str] = None
    text: Optional[str] = None
    is_echo: bool = False
    attachments: list[MetaAttachment] = Field(default_factory=list)
    quick_reply: Optional[MetaQuickReply] = None


class MetaPostback(BaseModel):
    mid: Optional[str] = None
    title: Optional[str] = None
    payload: Optional[str] = None


class MetaMessagingEvent(BaseModel):
    """One item of ``entry[].messaging``; delivery/read receipts carry neither message nor postback."""

    model_config = ConfigDict(extra="allow")

    sender: MetaParty
    recipient: MetaParty
    timestamp: Optional[int] = None
    message: Optional[MetaMessage] = None
    postback: Optional[MetaPostback] = None


class MetaChangeValue(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    item: Optional[str] = None
    verb: Optional[str] = None
    comment_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("comment_id", "id"))
    post_id: Optional[str] = None
    message: Optional[str] = Field(default=None, validation_alias=AliasChoices("message", "text"))
    sender: Optional[MetaParty] = Field(default=None, validation_alias=AliasChoices("from", "sender"))


class MetaChange(BaseModel):
    field: str
    value: MetaChangeValue


class MetaEntry(BaseModel):
    id: str
    time: Optional[int] = None
    messaging: list[MetaMessagingEvent] = Field(default_factory=list)
    changes: list[MetaChange] = Field(default_factory=list)


class MetaWebhookPayload(BaseModel):
    object: str
    entry: list[MetaEntry] = Field(default_factory=list)


class WebhookAck(BaseModel):
    status: str = "ok"


class SweepResponse(BaseModel):
    processed: int
    batches: int
