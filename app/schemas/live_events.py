"""
app.schemas.live_events
~~~~~~~~~~~~~~~~~~~~~~~

直播间实时事件的 Pydantic 模型。

客户端与服务端之间的每一帧 WebSocket 文本都是一个 JSON 信封::

    {"event": "join_stream", "data": 42}
    {"event": "chat_message", "data": {"streamId": 42, "message": "hi"}}
    {"event": "viewer_count", "data": {"streamId": "42", "count": 2}}

字段在线上一律使用 camelCase，Python 侧使用 snake_case。
"""
from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# 与 HTTP 弹幕接口保持一致的长度上限
CHAT_MESSAGE_MAX_LENGTH: int = 500

ClientEventName = Literal["join_stream", "leave_stream", "chat_message"]
ServerEventName = Literal[
    "viewer_count", "new_message", "chat_history", "system",
]


def normalize_stream_id(value: Any) -> str:
    """把直播间 ID 归一化为唯一的字符串形式。

    ``42``、``"42"``、``" 042 "``、``"+42"`` 都会得到 ``"42"``，
    保证 join / leave / broadcast 使用的 key 完全一致。

    Raises:
        ValueError: ``None``、布尔值、空字符串或其他类型。
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"无效的 streamId: {value!r}")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("streamId 不能为空")
        digits = text[1:] if text[0] in "+-" else text
        if digits.isdecimal():
            return str(int(text))
        return text
    raise ValueError(f"无效的 streamId 类型: {type(value).__name__}")


StreamId = Annotated[str, BeforeValidator(normalize_stream_id)]


class CamelModel(BaseModel):
    """线上字段使用 camelCase 的基类。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── 客户端 → 服务端 ──────────────────────────────────────────────────

class ClientEvent(BaseModel):
    """客户端上行事件信封。``event`` 未知时由协调器记录并丢弃。"""

    event: str = Field(..., min_length=1, description="事件名称")
    data: Any = Field(default=None, description="事件负载")


class StreamRef(CamelModel):
    """``join_stream`` / ``leave_stream`` 负载。"""

    stream_id: StreamId = Field(..., description="直播间 ID")


class ChatMessageIn(CamelModel):
    """``chat_message`` 负载。

    username / avatar 由客户端提供，仅作展示用途，服务端不做校验。
    """

    stream_id: StreamId = Field(..., description="直播间 ID")
    user_id: str | int | None = Field(default=None, description="发送者用户 ID")
    username: str | None = Field(default=None, description="展示用昵称")
    avatar: str | None = Field(default=None, description="展示用头像 URL")
    message: str = Field(
        ..., min_length=1, max_length=CHAT_MESSAGE_MAX_LENGTH,
        description="弹幕文本",
    )

    @field_validator("message", mode="before")
    @classmethod
    def _strip_message(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value


# ── 服务端 → 客户端 ──────────────────────────────────────────────────

class ChatMessage(CamelModel):
    """一条广播出去的弹幕，同时也是历史缓存中的元素。"""

    id: str = Field(..., description="合成 ID（毫秒时间戳 + 进程内序号）")
    user_id: str | int | None = Field(default=None, description="发送者用户 ID")
    username: str | None = Field(default=None, description="展示用昵称")
    avatar: str | None = Field(default=None, description="展示用头像 URL")
    message: str = Field(..., description="弹幕文本")
    timestamp: str = Field(..., description="发送时间（ISO-8601, UTC）")


class ViewerCount(CamelModel):
    """``viewer_count`` 负载。"""

    stream_id: str = Field(..., description="直播间 ID")
    count: int = Field(..., ge=0, description="当前在线观众数")


class ChatHistory(CamelModel):
    """``chat_history`` 负载，仅发给刚加入的会话。"""

    stream_id: str = Field(..., description="直播间 ID")
    messages: list[ChatMessage] = Field(default_factory=list, description="最近弹幕")


class ServerEvent(BaseModel):
    """服务端下行事件信封。"""

    event: ServerEventName = Field(..., description="事件名称")
    data: Any = Field(default=None, description="事件负载")

    def to_json(self) -> str:
        """序列化为线上格式（camelCase）。"""
        return self.model_dump_json(by_alias=True)


# ── REST 响应数据 ────────────────────────────────────────────────────

class RoomInfoData(BaseModel):
    """直播间在线信息。"""

    stream_id: str = Field(..., description="直播间 ID")
    viewer_count: int = Field(..., description="当前在线观众数")


class RecentMessagesData(BaseModel):
    """最近弹幕响应数据。"""

    stream_id: str = Field(..., description="直播间 ID")
    messages: list[ChatMessage] = Field(..., description="消息列表（按到达顺序）")
    total: int = Field(..., description="本次返回条数")
