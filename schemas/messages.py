from pydantic import BaseModel


class Message(BaseModel):
    """Stored chat message."""
    id: int
    room_id: int
    username: str
    text: str
    time: str
    is_edited: bool = False

    def to_event(self, event_type: str, can_edit: bool) -> dict:
        """Render the message as a realtime event for one recipient."""
        return {
            "type": event_type,
            "id": self.id,
            "username": self.username,
            "text": self.text,
            "time": self.time,
            "is_edited": self.is_edited,
            "canEdit": can_edit,
        }

    def to_history_entry(self, can_edit: bool) -> dict:
        entry = self.to_event("message", can_edit)
        del entry["type"]
        return entry
