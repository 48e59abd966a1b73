from fastapi import Request

from app.services.history_cache import ChatHistoryCache
from app.services.room_registry import RoomRegistry


def get_registry(request: Request) -> RoomRegistry:
    return request.app.state.registry


def get_history_cache(request: Request) -> ChatHistoryCache:
    return request.app.state.history
