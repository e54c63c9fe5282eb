"""structlog 配置模块

dev 模式：pretty print 可读输出
json 模式：结构化 JSON 输出
所有日志经过 redact_sensitive 处理器，secret / 原始访客标识类字段一律替换为占位符。
Logfire APM：LOGFIRE_SEND_TO_LOGFIRE 环境变量控制，false 时降级为纯本地日志。
导出的 span 同样不含原始访客标识：端点参数去掉敏感字段，客户端地址被覆盖。
"""

import logging
import os

import structlog
from fastapi import FastAPI
from pydantic import BaseModel

# 不允许出现在日志中的字段名
SENSITIVE_KEYS = frozenset(
    {
        "secret",
        "presented_secret",
        "raw_secret",
        "authorization",
        "visitor",
        "raw_identifier",
        "client_ip",
        "visitor_salt",
    }
)

REDACTED = "[redacted]"

# OTel ASGI 从 scope["client"] 采集的客户端地址属性（新旧语义约定）
CLIENT_ADDRESS_ATTRIBUTES = (
    "client.address",
    "net.peer.ip",
    "net.sock.peer.addr",
    "http.client_ip",
)


def redact_sensitive(
    logger: object, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """structlog 处理器：屏蔽敏感字段"""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def setup_logging() -> None:
    """初始化 structlog 配置

    根据 SIGHTLINE_LOG_FORMAT 环境变量选择渲染模式：
    - "json": 结构化 JSON 输出（生产环境）
    - "dev" (默认): pretty print 可读输出
    SIGHTLINE_LOG_LEVEL 控制日志级别（默认 INFO）。
    已配置过则直接返回，已缓存的 logger 继续共用同一条处理链。
    """
    if structlog.is_configured():
        return

    log_format = os.environ.get("SIGHTLINE_LOG_FORMAT", "dev")
    log_level = os.environ.get("SIGHTLINE_LOG_LEVEL", "INFO")

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        redact_sensitive,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # 标准库 logging（uvicorn 等）走同一条处理链
    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # uvicorn access log 会记录客户端地址（原始访客标识），关闭
    logging.getLogger("uvicorn.access").disabled = True


def _drop_sensitive(value):
    if isinstance(value, BaseModel):
        value = value.model_dump()
    if isinstance(value, dict):
        return {k: _drop_sensitive(v) for k, v in value.items() if k not in SENSITIVE_KEYS}
    return value


def scrub_request_attributes(request: object, attributes: dict) -> dict:
    """Logfire request_attributes_mapper：端点参数中去掉 secret / 原始访客标识

    校验错误里的 input 会原样回显请求体，一并去掉。
    """
    errors = [
        {k: v for k, v in err.items() if k != "input"} for err in attributes.get("errors") or []
    ]
    return {
        **attributes,
        "values": _drop_sensitive(attributes.get("values") or {}),
        "errors": errors,
    }


def redact_client_address(span: object, scope: dict) -> None:
    """OTel server_request_hook：覆盖请求 span 上的客户端地址"""
    attributes = getattr(span, "attributes", None) or {}
    for key in CLIENT_ADDRESS_ATTRIBUTES:
        if key in attributes:
            span.set_attribute(key, REDACTED)


def setup_logfire(app: FastAPI) -> None:
    """Logfire 可选初始化

    LOGFIRE_SEND_TO_LOGFIRE 环境变量控制：
    - "true": 启用 Logfire APM（需要 LOGFIRE_TOKEN，安装 logfire extra）
    - "false" (默认): 纯本地日志
    """
    send_to_logfire = os.environ.get("LOGFIRE_SEND_TO_LOGFIRE", "false").lower()
    if send_to_logfire != "true":
        return
    try:
        import logfire

        logfire.configure()
        logfire.instrument_fastapi(
            app,
            request_attributes_mapper=scrub_request_attributes,
            server_request_hook=redact_client_address,
        )
    except Exception:
        # APM 初始化失败不影响摄入
        structlog.get_logger().warning(
            "logfire_init_failed",
            message="Logfire 初始化失败，降级为纯本地日志",
        )
