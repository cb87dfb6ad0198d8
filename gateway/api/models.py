"""Request body models.

Chat-style bodies allow extra fields: the protocol adapter decides what is
forwarded, so unknown sampling parameters must survive validation.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _PassthroughBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    model: str = Field(min_length=1)
    stream: bool = False
    provider_account_id: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class ChatCompletionRequest(_PassthroughBody):
    messages: list[dict[str, Any]]


class MessagesRequest(_PassthroughBody):
    messages: list[dict[str, Any]]
    max_tokens: int | None = None
    system: str | list[dict[str, Any]] | None = None


class ResponsesRequest(_PassthroughBody):
    input: str | list[dict[str, Any]]
    instructions: str | None = None


# ======================================================================
# Account linking
# ======================================================================


class CallbackRequest(BaseModel):
    callback_url: str = Field(min_length=1)


class DevicePollRequest(BaseModel):
    device_code: str = Field(min_length=1)
    identity: str | None = None


class ApiKeyRequest(BaseModel):
    provider: str
    api_key: str = Field(min_length=1)
    name: str | None = None


class AccountPatchRequest(BaseModel):
    is_active: bool | None = None
    name: str | None = Field(default=None, min_length=1)
