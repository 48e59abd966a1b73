"""
app.schemas.api_response
~~~~~~~~~~~~~~~~~~~~~~~~

REST 接口的统一应答体。

实时通道（WebSocket）使用 ``ServerEvent`` 信封，不经过这里；
只有 ``/api`` 下的只读查询接口和全局异常处理器会返回 ``ApiResponse``。
"""
from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """统一 JSON 应答体:

    .. code-block:: json

        {"code": 200, "data": {"stream_id": "42", "viewer_count": 3}, "msg": "success"}

    Attributes:
        code: 业务状态码，200 表示成功。
        data: 业务数据，失败时通常为 ``None``。
        msg: 人类可读的状态消息。
    """

    code: int = Field(default=200, description="业务状态码")
    data: T = Field(..., description="业务数据")
    msg: str = Field(default="success", description="状态消息")

    @classmethod
    def ok(cls, data: T, msg: str = "success") -> ApiResponse[T]:
        return cls(code=200, data=data, msg=msg)

    @classmethod
    def fail(cls, msg: str = "error", code: int = 500, data: Any = None) -> ApiResponse[Any]:
        return cls(code=code, data=data, msg=msg)
