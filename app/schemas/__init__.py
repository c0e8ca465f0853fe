"""
app.schemas
~~~~~~~~~~~
Pydantic schemas and models for the chat server.
"""
from app.schemas.api_response import ApiResponse
from app.schemas.chat_events import (
    SYSTEM_AUTHOR,
    ChatMessage,
    Identity,
    RoomHistoryData,
    RoomInfoData,
    RoomMember,
)

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
