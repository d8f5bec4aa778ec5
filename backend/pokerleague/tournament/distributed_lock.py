"""
Per-Round Write Locks.

라운드 단위 단일 작성자 보장: "현재 상태 읽기 -> 전이 검증 -> 새 상태 쓰기"가
같은 라운드에 대해 끼어들기 없이 수행되도록 한다.

Lock Hierarchy:
- lock:season                # 시즌 전체 (라운드 생성, 파이널 테이블 생성)
- lock:round:{id}            # 개별 라운드 (타이머, 탈락, 완료)

구현:
- RedisLockManager: 다중 프로세스용 (SET NX PX + Lua 소유자 확인 해제)
- LocalLockManager: 단일 프로세스용 (asyncio.Lock)
"""

import asyncio
import hashlib
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncGenerator, Dict, Optional, Set
from uuid import uuid4

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from pokerleague.logging_config import get_logger
from pokerleague.utils.errors import TransientIOError

logger = get_logger(__name__)


class LockType(Enum):
    """Lock granularity types."""

    SEASON = "season"  # 시즌 전체
    ROUND = "round"  # 개별 라운드


@dataclass
class LockInfo:
    """Lock metadata."""

    lock_key: str
    owner_id: str
    acquired_at: float
    expires_at: float
    lock_type: LockType


class DistributedLockError(Exception):
    """Base lock error."""

    pass


class LockAcquisitionError(DistributedLockError):
    """Failed to acquire lock within timeout."""

    pass


def make_lock_key(lock_type: LockType, resource_id: Optional[int] = None) -> str:
    """
    Generate lock key.

    Key 구조:
    - lock:season
    - lock:round:{id}
    """
    if lock_type == LockType.SEASON:
        return "lock:season"
    return f"lock:round:{resource_id}"


class RoundLockManager(ABC):
    """Common interface: `async with manager.lock(LockType.ROUND, round_id)`."""

    default_lock_timeout_ms: int = 10000
    default_acquire_timeout_ms: int = 5000

    @abstractmethod
    async def acquire(
        self,
        lock_type: LockType,
        resource_id: Optional[int] = None,
        lock_timeout_ms: Optional[int] = None,
        acquire_timeout_ms: Optional[int] = None,
    ) -> LockInfo:
        """Raises LockAcquisitionError when acquire_timeout_ms elapses."""

    @abstractmethod
    async def release(self, lock_info: LockInfo) -> bool:
        """False when the lock is no longer held by this owner."""

    @abstractmethod
    async def is_locked(self, lock_type: LockType, resource_id: Optional[int] = None) -> bool:
        ...

    @asynccontextmanager
    async def lock(
        self,
        lock_type: LockType,
        resource_id: Optional[int] = None,
        lock_timeout_ms: Optional[int] = None,
        acquire_timeout_ms: Optional[int] = None,
    ) -> AsyncGenerator[LockInfo, None]:
        """
        Context manager for automatic lock acquire/release.

        획득 실패(타임아웃, 저장소 장애)는 TransientIOError로 변환되어
        호출자가 재시도할 수 있다. 예외 발생 시에도 finally에서 해제.
        """
        key = make_lock_key(lock_type, resource_id)
        try:
            lock_info = await self.acquire(
                lock_type,
                resource_id,
                lock_timeout_ms,
                acquire_timeout_ms,
            )
        except LockAcquisitionError as exc:
            logger.warning("lock_acquire_timeout", lock_key=key)
            raise TransientIOError(f"lock {key}", str(exc)) from exc

        try:
            yield lock_info
        finally:
            released = await self.release(lock_info)
            if not released:
                # TTL 만료 후 다른 작성자가 획득했을 수 있음
                logger.warning("lock_expired_before_release", lock_key=key)

    async def cleanup_all(self) -> int:
        return 0


class RedisLockManager(RoundLockManager):
    """
    Redis-based lock manager.

    Redis 명령어 사용:
    - SET NX PX: 원자적 락 획득 (key가 없을 때만 설정, 만료시간 포함)
    - GET + DEL (Lua): 원자적 락 해제 (owner 확인 후 삭제)
    """

    # 락 소유자 확인 후 삭제 - 다른 프로세스의 락을 실수로 해제하지 않음
    RELEASE_LOCK_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        default_lock_timeout_ms: int = 10000,  # 기본 락 타임아웃: 10초
        default_acquire_timeout_ms: int = 5000,  # 기본 획득 대기: 5초
        retry_interval_ms: int = 50,  # 재시도 간격: 50ms
    ):
        self.redis = redis_client
        self.default_lock_timeout_ms = default_lock_timeout_ms
        self.default_acquire_timeout_ms = default_acquire_timeout_ms
        self.retry_interval_ms = retry_interval_ms

        self._instance_id = str(uuid4())
        self._held_locks: Set[str] = set()
        self._release_script = None

    async def _ensure_scripts(self) -> None:
        if self._release_script is None:
            self._release_script = self.redis.register_script(self.RELEASE_LOCK_SCRIPT)

    def _make_owner_token(self) -> str:
        raw = f"{self._instance_id}:{time.time_ns()}:{uuid4().hex[:8]}"
        return hashlib.sha256(raw.encode()).hexdigest()[:32]

    async def acquire(
        self,
        lock_type: LockType,
        resource_id: Optional[int] = None,
        lock_timeout_ms: Optional[int] = None,
        acquire_timeout_ms: Optional[int] = None,
    ) -> LockInfo:
        """
        Acquire lock with SET NX PX, polling every retry_interval_ms.

        Raises:
            LockAcquisitionError: lock not acquired within acquire timeout
            TransientIOError: Redis unreachable
        """
        await self._ensure_scripts()

        lock_timeout = lock_timeout_ms or self.default_lock_timeout_ms
        acquire_timeout = acquire_timeout_ms or self.default_acquire_timeout_ms

        lock_key = make_lock_key(lock_type, resource_id)
        owner_token = self._make_owner_token()
        start_time = time.monotonic() * 1000

        while True:
            try:
                acquired = await self.redis.set(
                    lock_key,
                    owner_token,
                    nx=True,
                    px=lock_timeout,
                )
            except (RedisConnectionError, RedisTimeoutError) as exc:
                raise TransientIOError(f"lock {lock_key}", str(exc)) from exc

            if acquired:
                now = time.time()
                self._held_locks.add(lock_key)
                return LockInfo(
                    lock_key=lock_key,
                    owner_id=owner_token,
                    acquired_at=now,
                    expires_at=now + (lock_timeout / 1000),
                    lock_type=lock_type,
                )

            elapsed = (time.monotonic() * 1000) - start_time
            if elapsed >= acquire_timeout:
                raise LockAcquisitionError(
                    f"Failed to acquire lock {lock_key} within {acquire_timeout}ms. "
                    f"Lock is held by another process."
                )

            await asyncio.sleep(self.retry_interval_ms / 1000)

    async def release(self, lock_info: LockInfo) -> bool:
        """Release if still owned; False when expired or taken over."""
        await self._ensure_scripts()
        self._held_locks.discard(lock_info.lock_key)
        try:
            result = await self._release_script(
                keys=[lock_info.lock_key],
                args=[lock_info.owner_id],
            )
        except (RedisConnectionError, RedisTimeoutError) as exc:
            # 해제 실패 시 TTL 만료로 자동 정리됨
            logger.warning("lock_release_failed", lock_key=lock_info.lock_key, error=str(exc))
            return False
        return result == 1

    async def is_locked(self, lock_type: LockType, resource_id: Optional[int] = None) -> bool:
        return await self.redis.exists(make_lock_key(lock_type, resource_id)) == 1

    async def cleanup_all(self) -> int:
        """Release all locks held by this instance (shutdown)."""
        released = 0
        for lock_key in list(self._held_locks):
            try:
                await self.redis.delete(lock_key)
                released += 1
            except (RedisConnectionError, RedisTimeoutError) as exc:
                logger.warning("lock_cleanup_failed", lock_key=lock_key, error=str(exc))
            self._held_locks.discard(lock_key)
        return released


class LocalLockManager(RoundLockManager):
    """In-process lock manager (single admin process, tests)."""

    def __init__(
        self,
        default_lock_timeout_ms: int = 10000,
        default_acquire_timeout_ms: int = 5000,
    ):
        self.default_lock_timeout_ms = default_lock_timeout_ms
        self.default_acquire_timeout_ms = default_acquire_timeout_ms
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_lock(self, lock_key: str) -> asyncio.Lock:
        lock = self._locks.get(lock_key)
        if lock is None:
            lock = self._locks[lock_key] = asyncio.Lock()
        return lock

    async def acquire(
        self,
        lock_type: LockType,
        resource_id: Optional[int] = None,
        lock_timeout_ms: Optional[int] = None,
        acquire_timeout_ms: Optional[int] = None,
    ) -> LockInfo:
        lock_key = make_lock_key(lock_type, resource_id)
        acquire_timeout = acquire_timeout_ms or self.default_acquire_timeout_ms
        lock = self._get_lock(lock_key)

        try:
            await asyncio.wait_for(lock.acquire(), timeout=acquire_timeout / 1000)
        except asyncio.TimeoutError as exc:
            raise LockAcquisitionError(
                f"Failed to acquire lock {lock_key} within {acquire_timeout}ms."
            ) from exc

        now = time.time()
        lock_timeout = lock_timeout_ms or self.default_lock_timeout_ms
        return LockInfo(
            lock_key=lock_key,
            owner_id=str(id(lock)),
            acquired_at=now,
            expires_at=now + (lock_timeout / 1000),
            lock_type=lock_type,
        )

    async def release(self, lock_info: LockInfo) -> bool:
        lock = self._locks.get(lock_info.lock_key)
        if lock is None or not lock.locked():
            return False
        lock.release()
        return True

    async def is_locked(self, lock_type: LockType, resource_id: Optional[int] = None) -> bool:
        lock = self._locks.get(make_lock_key(lock_type, resource_id))
        return bool(lock and lock.locked())
