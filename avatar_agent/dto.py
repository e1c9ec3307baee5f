# avatar_agent/dto.py
"""
Webhook payloads posted by the VS Agent, plus the presentation-request API.
Unknown fields are kept so the router can read type-specific extras.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ReceivedMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    connectionId: str
    type: str
    content: Optional[str] = None
    threadId: Optional[str] = None
    state: Optional[str] = None
    submittedProofItems: Optional[List[Dict[str, Any]]] = None
    # profile messages
    displayName: Optional[str] = None
    preferredLanguage: Optional[str] = None


class MessageReceivedEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    message: ReceivedMessage


class ConnectionEstablishedEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    connectionId: str
    language: Optional[str] = None


class PresentationCallback(BaseModel):
    model_config = ConfigDict(extra="allow")

    proofExchangeId: Optional[str] = None
    ref: Optional[str] = None
    verified: bool = False
    claims: Any = Field(default_factory=list)


class PresentationRequestBody(BaseModel):
    avatarConfigId: str
    connectionId: Optional[str] = None


class SessionStartBody(BaseModel):
    sessionToken: Optional[str] = None
