"""事件摄入路由

POST /api/events: 接收一条访客事件。
secret 通过 Authorization: Bearer <secret> 传递，每次请求都携带，服务端不缓存。
原始访客标识优先取请求体 visitor，否则取 X-Forwarded-For 首跳，再否则取客户端地址；
它只用于匿名化，不落盘、不记录日志、不返回。
"""

import math

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, Field
from sightline.core.models import RejectReason
from starlette.responses import JSONResponse

from ..deps import get_ingestion_service, parse_bearer
from ..services.ingestion_service import IngestionService

router = APIRouter()


class EventRequest(BaseModel):
    """事件摄入请求体"""

    token_id: str = Field(description="来源 token ID")
    action: str = Field(description="行为类型：view|click|scroll|download|share")
    path: str = Field(description="资源路径")
    visitor: str | None = Field(default=None, description="原始访客标识（可选）")


# 拒绝原因 -> (HTTP 状态码, 错误码)
_REJECTION_STATUS: dict[RejectReason, tuple[int, str]] = {
    RejectReason.INVALID_INPUT: (400, "INVALID_INPUT"),
    RejectReason.UNAUTHORIZED: (401, "UNAUTHORIZED"),
    RejectReason.RATE_LIMITED: (429, "RATE_LIMITED"),
    RejectReason.STORAGE_ERROR: (503, "STORAGE_ERROR"),
}

_REJECTION_MESSAGE: dict[RejectReason, str] = {
    RejectReason.INVALID_INPUT: "Unsupported action or empty path",
    RejectReason.UNAUTHORIZED: "Authentication failed",
    RejectReason.RATE_LIMITED: "Rate limit exceeded, back off and retry later",
    RejectReason.STORAGE_ERROR: "Event storage temporarily unavailable",
}


def resolve_raw_identifier(body: EventRequest, request: Request) -> str:
    """确定原始访客标识"""
    if body.visitor:
        return body.visitor
    forwarded = request.headers.get("X-Forwarded-For", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop
    return request.client.host if request.client else ""


@router.post("/api/events", status_code=202)
async def collect_event(
    body: EventRequest,
    request: Request,
    authorization: str | None = Header(default=None),
    service: IngestionService = Depends(get_ingestion_service),
):
    """摄入一条事件

    - 接受返回 202
    - 拒绝返回 400 / 401 / 429 / 503，错误体 {"error": {"code", "message"}}
    """
    result = await service.ingest(
        token_id=body.token_id,
        presented_secret=parse_bearer(authorization),
        action=body.action,
        resource_path=body.path,
        raw_identifier=resolve_raw_identifier(body, request),
    )
    if result.accepted:
        return {"status": "accepted"}

    status_code, code = _REJECTION_STATUS[result.reason]
    headers = {}
    if result.reason is RejectReason.RATE_LIMITED and result.retry_after_s is not None:
        headers["Retry-After"] = str(max(1, math.ceil(result.retry_after_s)))
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": _REJECTION_MESSAGE[result.reason],
            }
        },
        headers=headers,
    )
