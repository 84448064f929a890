"""
Relay Message Schemas
=====================

Pydantic schemas for the JSON messages exchanged between the browser client
and the relay over the conversation WebSocket.

Client -> relay messages form a union discriminated on ``type``; relay -> client
messages are built from the outbound models and serialized with
``model_dump_json``.
"""

from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


# --------------------------------------------------------------------------- #
#  Client -> relay
# --------------------------------------------------------------------------- #
class StartMessage(BaseModel):
    """Open an upstream conversation with the given voice and prompt."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["start"]
    voice: Optional[str] = Field(None, description="Prebuilt voice name", examples=["Kore"])
    system_prompt: Optional[str] = Field(
        None,
        alias="systemPrompt",
        description="System instruction for the model",
        examples=["You are a helpful assistant."],
    )


class AudioMessage(BaseModel):
    """One microphone chunk, base64 PCM16 at 16 kHz mono."""

    type: Literal["audio"]
    data: str = Field(..., min_length=1)


class VideoMessage(BaseModel):
    """One camera frame, base64 JPEG."""

    type: Literal["video"]
    data: str = Field(..., min_length=1)


class StopMessage(BaseModel):
    """Close the upstream conversation."""

    type: Literal["stop"]


ClientMessage = Annotated[
    Union[StartMessage, AudioMessage, VideoMessage, StopMessage],
    Field(discriminator="type"),
]

client_message_adapter: TypeAdapter = TypeAdapter(ClientMessage)


def parse_client_message(raw: Union[str, bytes]) -> ClientMessage:
    """
    Parse and validate a raw client frame.

    :raises pydantic.ValidationError: If the frame is not valid JSON or does not
        match any client message shape.
    """
    return client_message_adapter.validate_json(raw)


# --------------------------------------------------------------------------- #
#  Relay -> client
# --------------------------------------------------------------------------- #
class StatusMessage(BaseModel):
    type: Literal["status"] = "status"
    status: Literal["connected", "disconnected", "stopped"]


class AudioOutMessage(BaseModel):
    type: Literal["audio"] = "audio"
    data: str = Field(..., description="Base64 PCM16 at 24 kHz mono")


class TextMessage(BaseModel):
    type: Literal["text"] = "text"
    data: str
    source: Literal["user", "ai"] = "ai"


class ErrorMessage(BaseModel):
    type: Literal["error"] = "error"
    message: str


# --------------------------------------------------------------------------- #
#  HTTP responses
# --------------------------------------------------------------------------- #
class ConfigResponse(BaseModel):
    """Response schema for the client bootstrap configuration endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    default_voice: str = Field(..., alias="defaultVoice", examples=["Kore"])
    voices: list[str] = Field(..., examples=[["Aoede", "Kore", "Puck"]])
    has_api_key: bool = Field(..., alias="hasApiKey", examples=[True])


class HealthResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str = Field("ok", examples=["ok"])
    service: str = Field("gemini-live", examples=["gemini-live"])
    active_sessions: int = Field(0, alias="activeSessions", ge=0, examples=[0])
