"""IngestionService -- 单条事件摄入编排

按顺序执行，每一步都是硬性关卡（不跳过、不重排）：
1. 校验 action 属于闭集、路径与访客标识非空 -> 否则 InvalidInput
2. SecretStore.verify -> 失败 Unauthorized，不做任何后续处理
3. RateLimiter.admit（使用 token 自身的 limit/window）-> 超限 RateLimited
4. Anonymizer.pseudonymize(raw_identifier)
5. EventStore.append -> 失败或超时 StorageError（不重试，交由调用方决定）
6. Accepted

第 5 步之前没有副作用，因此无需回滚/补偿逻辑。
原始 secret 与原始访客标识永远不进入日志。
"""

import asyncio
from dataclasses import dataclass

import structlog
from sightline.core.anonymizer import Anonymizer
from sightline.core.config import MAX_RESOURCE_PATH_LENGTH
from sightline.core.exceptions import AuthError, StorageError
from sightline.core.models import Admission, NewEvent, RejectReason, parse_action
from sightline.core.rate_limiter import FixedWindowRateLimiter
from sightline.core.secret_store import SecretStore
from sightline.core.store.protocols import EventStore

log = structlog.get_logger()


@dataclass(frozen=True)
class IngestResult:
    """摄入结果：accepted 或 rejected(reason)"""

    accepted: bool
    reason: RejectReason | None = None
    event_id: str | None = None
    retry_after_s: float | None = None

    @classmethod
    def accept(cls, event_id: str) -> "IngestResult":
        return cls(accepted=True, event_id=event_id)

    @classmethod
    def reject(cls, reason: RejectReason, retry_after_s: float | None = None) -> "IngestResult":
        return cls(accepted=False, reason=reason, retry_after_s=retry_after_s)


class IngestionService:
    """事件摄入业务服务"""

    def __init__(
        self,
        secret_store: SecretStore,
        rate_limiter: FixedWindowRateLimiter,
        anonymizer: Anonymizer,
        event_store: EventStore,
        auth_timeout_s: float = 5.0,
        store_timeout_s: float = 5.0,
    ) -> None:
        self._secrets = secret_store
        self._limiter = rate_limiter
        self._anonymizer = anonymizer
        self._events = event_store
        self._auth_timeout_s = auth_timeout_s
        self._store_timeout_s = store_timeout_s

    async def ingest(
        self,
        token_id: str,
        presented_secret: str,
        action: str,
        resource_path: str,
        raw_identifier: str,
    ) -> IngestResult:
        """摄入一条事件"""
        # 1. 输入校验
        kind = parse_action(action)
        path = resource_path.strip()[:MAX_RESOURCE_PATH_LENGTH]
        if kind is None or not path or not raw_identifier:
            return self._rejected(
                RejectReason.INVALID_INPUT,
                token_id,
                action=action[:32],
            )

        # 2. 认证
        try:
            rate = await asyncio.wait_for(
                self._secrets.verify(token_id, presented_secret),
                timeout=self._auth_timeout_s,
            )
        except AuthError as e:
            return self._rejected(RejectReason.UNAUTHORIZED, token_id, detail=type(e).__name__)
        except TimeoutError:
            return self._rejected(RejectReason.STORAGE_ERROR, token_id, stage="auth", detail="timeout")
        except StorageError as e:
            return self._rejected(RejectReason.STORAGE_ERROR, token_id, stage="auth", detail=str(e))

        # 3. 限流（被拒绝的请求同样消耗额度）
        admission = await self._limiter.admit(token_id, rate.rate_limit, rate.window_s)
        if admission is Admission.RATE_LIMITED:
            return self._rejected(
                RejectReason.RATE_LIMITED,
                token_id,
                retry_after_s=self._limiter.retry_after(token_id),
            )

        # 4. 匿名化
        new_event = NewEvent(
            token_id=token_id,
            action=kind,
            resource_path=path,
            visitor_id=self._anonymizer.pseudonymize(raw_identifier),
        )

        # 5. 持久化
        try:
            event_id = await asyncio.wait_for(
                self._events.append(new_event),
                timeout=self._store_timeout_s,
            )
        except TimeoutError:
            return self._rejected(RejectReason.STORAGE_ERROR, token_id, stage="append", detail="timeout")
        except StorageError as e:
            return self._rejected(RejectReason.STORAGE_ERROR, token_id, stage="append", detail=str(e))

        # 6. 接受
        log.info(
            "event_accepted",
            token_id=token_id,
            event_id=event_id,
            action=kind.value,
        )
        return IngestResult.accept(event_id)

    @staticmethod
    def _rejected(
        reason: RejectReason,
        token_id: str,
        retry_after_s: float | None = None,
        **fields,
    ) -> IngestResult:
        if reason is RejectReason.STORAGE_ERROR:
            log.warning("event_rejected", token_id=token_id, reason=reason.value, **fields)
        else:
            log.info("event_rejected", token_id=token_id, reason=reason.value, **fields)
        return IngestResult.reject(reason, retry_after_s)
