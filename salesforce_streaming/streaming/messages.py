"""
Streaming Message Models

Pydantic models for what the streaming API delivers: PushTopic notifications,
generic channel payloads and Change Data Capture events.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Replay cursors understood by the replay extension
REPLAY_ALL = -2
REPLAY_NEW = -1


class StreamingEvent(BaseModel):
    """Event descriptor attached to every delivered message"""

    model_config = ConfigDict(extra="allow")

    type: Optional[str] = Field(None, description="created, updated, deleted or undeleted (PushTopic only)")
    replayId: Optional[int] = None
    createdDate: Optional[str] = None


class ChangeEventHeader(BaseModel):
    """Header of a Change Data Capture payload"""

    model_config = ConfigDict(extra="allow")

    entityName: Optional[str] = None
    changeType: Optional[str] = None
    recordIds: List[str] = Field(default_factory=list)
    commitTimestamp: Optional[int] = None
    transactionKey: Optional[str] = None
    changeOrigin: Optional[str] = None


class StreamingMessage(BaseModel):
    """
    A delivered message (the 'data' member of a Bayeux message).

    PushTopic messages carry 'sobject', generic channel messages carry a
    string 'payload', CDC messages carry a dict 'payload' with a ChangeEventHeader.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    event: StreamingEvent = Field(default_factory=StreamingEvent)
    sobject: Optional[Dict[str, Any]] = None
    payload: Optional[Any] = None
    schema_id: Optional[str] = Field(None, alias="schema")

    @property
    def replay_id(self) -> Optional[int]:
        return self.event.replayId

    @property
    def change_event_header(self) -> Optional[ChangeEventHeader]:
        if isinstance(self.payload, dict) and isinstance(self.payload.get("ChangeEventHeader"), dict):
            return ChangeEventHeader.model_validate(self.payload["ChangeEventHeader"])
        return None

    @property
    def is_change_event(self) -> bool:
        return self.change_event_header is not None

    @property
    def record_ids(self) -> List[str]:
        header = self.change_event_header
        return header.recordIds if header else []

    def payload_field(self, name: str) -> Any:
        """Field of a dict payload (CDC), or None"""
        if isinstance(self.payload, dict):
            return self.payload.get(name)
        return None


class PushEvent(BaseModel):
    """An event published to a generic streaming channel"""

    payload: str
    userIds: List[str] = Field(default_factory=list)


class PushResult(BaseModel):
    """
    Outcome of a publish.

    fanoutCount is -1 when the event went to a durable subscription with
    an active subscriber and 0 when nobody was listening.
    """

    model_config = ConfigDict(extra="allow")

    fanoutCount: int
    userOnlineStatus: Dict[str, Any] = Field(default_factory=dict)
