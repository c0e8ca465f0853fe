"""
app.api.rooms
~~~~~~~~~~~~~

聊天室 REST 接口 —— 只读的房间列表与历史回看。

路由前缀 ``/api``，所有状态变更只通过 WebSocket 事件进行。

端点:
  - ``GET /rooms``                 → 获取房间列表
  - ``GET /rooms/{name}/history``  → 获取房间历史消息
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from app.api.deps import get_chat_system
from app.schemas.api_response import ApiResponse
from app.schemas.chat_events import RoomHistoryData, RoomInfoData
from app.services.chat_system import ChatSystem

router: APIRouter = APIRouter()


@router.get("/rooms", summary="获取房间列表")
async def list_rooms(
    system: ChatSystem = Depends(get_chat_system),
) -> ApiResponse[list[RoomInfoData]]:
    """返回所有现存房间（含默认房间）的摘要信息。"""
    return ApiResponse.ok(data=system.directory.list_rooms())


@router.get(
    "/rooms/{name}/history",
    summary="获取房间历史消息",
    response_model=ApiResponse[RoomHistoryData],
)
async def get_history(
    name: str,
    limit: int = Query(100, ge=1, le=100, description="返回最近的条数"),
    system: ChatSystem = Depends(get_chat_system),
) -> ApiResponse[RoomHistoryData] | JSONResponse:
    """获取指定房间最近的历史消息（按时间正序）。

    Args:
        name: 房间名。
        limit: 返回最近的条数（1-100）。
    """
    room = system.directory.get_room(name)
    if room is None:
        response = ApiResponse.fail(msg=f"Room '{name}' does not exist", code=404)
        return JSONResponse(status_code=404, content=response.model_dump())

    messages = system.directory.history(room)[-limit:]
    return ApiResponse.ok(
        data=RoomHistoryData(room=room.name, messages=messages, total=len(messages)),
    )
