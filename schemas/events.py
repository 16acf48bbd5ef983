from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from typing import Annotated, Literal, Union
from schemas.fields import Utf8Str


class ClientEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class JoinEvent(ClientEvent):
    type: Literal["join"]
    room_id: int = Field(alias="roomId")
    username: Utf8Str = ""

class ChatMessageEvent(ClientEvent):
    type: Literal["message"]
    text: Utf8Str = ""

class EditEvent(ClientEvent):
    type: Literal["edit"]
    message_id: int = Field(alias="messageId")
    new_text: Utf8Str = Field("", alias="newText")

class DeleteEvent(ClientEvent):
    type: Literal["delete"]
    message_id: int = Field(alias="messageId")


IncomingEvent = Annotated[
    Union[JoinEvent, ChatMessageEvent, EditEvent, DeleteEvent],
    Field(discriminator="type"),
]

incoming_event_adapter = TypeAdapter(IncomingEvent)


def history_event(entries: list) -> dict:
    return {"type": "history", "messages": entries}


def delete_event(message_id: int) -> dict:
    return {"type": "delete", "messageId": message_id}


def room_deleted_event(room_id: int) -> dict:
    return {"type": "room_deleted", "roomId": room_id}


def error_event(action: str, detail: str) -> dict:
    return {"type": "error", "action": action, "detail": detail}
