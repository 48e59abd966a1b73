"""
app.api.live_endpoints
~~~~~~~~~~~~~~~~~~~~~~

直播间只读 REST 接口 —— 在线人数查询 + 最近弹幕回看。

路由前缀 ``/api``。写操作（加入、离开、发弹幕）只走 WebSocket。

端点:
  - ``GET /streams/live``                      → 所有有人在看的直播间
  - ``GET /streams/{stream_id}/viewers``       → 指定直播间在线人数
  - ``GET /streams/{stream_id}/chat/recent``   → 最近弹幕（来自缓存）
"""
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from app.api.deps import get_history_cache, get_registry
from app.core.rate_limit import limiter
from app.schemas.api_response import ApiResponse
from app.schemas.live_events import RecentMessagesData, RoomInfoData, normalize_stream_id
from app.services.history_cache import ChatHistoryCache
from app.services.room_registry import RoomRegistry

router: APIRouter = APIRouter()


def _stream_id_or_400(stream_id: str) -> str:
    try:
        return normalize_stream_id(stream_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


# ── 在线人数 ──────────────────────────────────────────────────────────

@router.get("/streams/live", summary="获取有人在看的直播间", response_model=ApiResponse[list[RoomInfoData]])
@limiter.limit("10/second")
async def list_live_streams(request: Request, registry: RoomRegistry = Depends(get_registry)):
    """返回所有活跃直播间及其在线人数，按人数从高到低排序。"""
    rooms = [
        RoomInfoData(stream_id=str(stream_id), viewer_count=count)
        for stream_id, count in registry.snapshot().items()
    ]
    rooms.sort(key=lambda room: room.viewer_count, reverse=True)
    return ApiResponse.ok(data=rooms)


@router.get("/streams/{stream_id}/viewers", summary="获取在线人数", response_model=ApiResponse[RoomInfoData])
@limiter.limit("10/second")
async def stream_viewers(request: Request, stream_id: str, registry: RoomRegistry = Depends(get_registry)):
    """返回指定直播间的在线人数，房间不存在时为 0。

    Args:
        stream_id: 直播间 ID。
    """
    room = _stream_id_or_400(stream_id)
    return ApiResponse.ok(data=RoomInfoData(stream_id=room, viewer_count=registry.count(room)))


# ── 最近弹幕 ──────────────────────────────────────────────────────────

@router.get(
    "/streams/{stream_id}/chat/recent",
    summary="获取最近弹幕",
    response_model=ApiResponse[RecentMessagesData],
)
@limiter.limit("5/second")
async def recent_chat(
    request: Request,
    stream_id: str,
    limit: int = Query(50, ge=1, le=100, description="最多返回条数"),
    history: ChatHistoryCache = Depends(get_history_cache),
):
    """获取指定直播间缓存中的最近弹幕（按到达顺序）。

    缓存不可用或已过期时返回空列表，不报错。

    Args:
        request: FastAPI Request 对象（用于限流判断）。
        stream_id: 直播间 ID。
        limit: 最多返回条数（1-100）。
    """
    room = _stream_id_or_400(stream_id)
    messages = await history.recent(room, limit=limit)
    return ApiResponse.ok(
        data=RecentMessagesData(stream_id=room, messages=messages, total=len(messages)),
    )
