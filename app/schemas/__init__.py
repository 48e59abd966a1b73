"""
app.schemas
~~~~~~~~~~~
Pydantic schemas for the REST API and the live WebSocket protocol.
"""
from app.schemas.api_response import ApiResponse
from app.schemas.live_events import (
    ChatHistory,
    ChatMessage,
    ChatMessageIn,
    ClientEvent,
    RecentMessagesData,
    RoomInfoData,
    ServerEvent,
    StreamRef,
    ViewerCount,
    normalize_stream_id,
)

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
