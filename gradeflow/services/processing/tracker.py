import asyncio
import json
import logging
import re
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple
import redis.asyncio as redis
from gradeflow.core.config import Settings, settings as default_settings
from gradeflow.schemas.processing import PHASE_PROGRESS, ProcessingPhase, ProcessingRecord

logger = logging.getLogger(__name__)

HANDLE_SEPARATOR = "-"
# Redis MATCH 패턴의 glob 특수문자
_GLOB_SPECIAL = re.compile(r"([\\*?\[\]])")


def _now_ms() -> int:
    return int(time.time() * 1000)


def escape_glob(value: str) -> str:
    return _GLOB_SPECIAL.sub(r"\\\1", value)


def make_handle(submission_id: str, created_ms: int) -> str:
    return f"{submission_id}{HANDLE_SEPARATOR}{created_ms}"


def parse_handle(handle: str) -> Tuple[str, int]:
    """handle -> (submission_id, 생성 시각 ms)"""
    submission_id, _, timestamp = handle.rpartition(HANDLE_SEPARATOR)
    try:
        return submission_id, int(timestamp)
    except ValueError:
        return submission_id, 0


class ProcessingTracker(ABC):
    """처리 핸들별 진행 상태 저장소"""

    def __init__(self, retention_seconds: int):
        self.retention_seconds = retention_seconds

    @abstractmethod
    async def new_handle(self, submission_id: str) -> str:
        ...

    @abstractmethod
    async def _store(self, record: ProcessingRecord) -> None:
        ...

    @abstractmethod
    async def lookup(self, submission_id: str) -> Optional[ProcessingRecord]:
        """해당 제출물의 가장 최근 레코드 (없거나 만료되면 None)"""

    @abstractmethod
    async def evict_expired(self) -> int:
        ...

    async def begin(self, handle: str) -> None:
        await self._store(ProcessingRecord(
            handle=handle,
            status=ProcessingPhase.STARTED,
            progress=PHASE_PROGRESS[ProcessingPhase.STARTED]
        ))

    async def advance(self, handle: str, phase: ProcessingPhase, progress: Optional[int] = None) -> None:
        if progress is None:
            progress = PHASE_PROGRESS[phase]
        await self._store(ProcessingRecord(handle=handle, status=phase, progress=progress))

    async def fail(self, handle: str, message: str) -> None:
        await self._store(ProcessingRecord(
            handle=handle,
            status=ProcessingPhase.ERROR,
            progress=0,
            error=message or "Unknown error"
        ))

    def is_expired(self, handle: str, now_ms: Optional[int] = None) -> bool:
        _, created_ms = parse_handle(handle)
        now_ms = _now_ms() if now_ms is None else now_ms
        return now_ms - created_ms > self.retention_seconds * 1000

    async def close(self) -> None:
        pass


class MemoryProcessingTracker(ProcessingTracker):
    """프로세스 로컬 저장소 (단일 인스턴스 배포용)"""

    def __init__(self, retention_seconds: int = 3600):
        super().__init__(retention_seconds)
        self._records: Dict[str, ProcessingRecord] = {}
        self._lock = asyncio.Lock()

    async def new_handle(self, submission_id: str) -> str:
        async with self._lock:
            created_ms = _now_ms()
            handle = make_handle(submission_id, created_ms)
            # 같은 ms 에 생성된 경우 유일성 보장
            while handle in self._records:
                created_ms += 1
                handle = make_handle(submission_id, created_ms)
            self._records[handle] = ProcessingRecord(handle=handle, status=ProcessingPhase.STARTED)
            return handle

    async def _store(self, record: ProcessingRecord) -> None:
        async with self._lock:
            self._records[record.handle] = record

    async def lookup(self, submission_id: str) -> Optional[ProcessingRecord]:
        async with self._lock:
            latest: Optional[Tuple[int, ProcessingRecord]] = None
            for handle, record in self._records.items():
                owner, created_ms = parse_handle(handle)
                if owner != submission_id:
                    continue
                if latest is None or created_ms > latest[0]:
                    latest = (created_ms, record)
            return latest[1] if latest else None

    async def evict_expired(self) -> int:
        now_ms = _now_ms()
        async with self._lock:
            expired = [h for h in self._records if self.is_expired(h, now_ms)]
            for handle in expired:
                del self._records[handle]
        if expired:
            logger.info(f"Evicted {len(expired)} stale processing records")
        return len(expired)


class RedisProcessingTracker(ProcessingTracker):
    """Redis 저장소 (여러 프로세스 공유, 만료는 TTL 로 처리)"""

    def __init__(self, redis_url: str, prefix: str, retention_seconds: int = 3600, client=None):
        super().__init__(retention_seconds)
        self.redis = client or redis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True
        )
        self.prefix = prefix

    def _key(self, handle: str) -> str:
        return f"{self.prefix}processing:{handle}"

    async def new_handle(self, submission_id: str) -> str:
        created_ms = _now_ms()
        while True:
            handle = make_handle(submission_id, created_ms)
            record = ProcessingRecord(handle=handle, status=ProcessingPhase.STARTED)
            # NX 로 핸들 선점
            reserved = await self.redis.set(
                self._key(handle),
                record.model_dump_json(),
                ex=self.retention_seconds,
                nx=True
            )
            if reserved:
                return handle
            created_ms += 1

    async def _store(self, record: ProcessingRecord) -> None:
        try:
            _, created_ms = parse_handle(record.handle)
            remaining = self.retention_seconds - (_now_ms() - created_ms) // 1000
            await self.redis.setex(self._key(record.handle), max(int(remaining), 1), record.model_dump_json())
        except Exception as e:
            logger.error(f"처리 상태 저장 중 오류 발생: {str(e)}")
            raise

    async def lookup(self, submission_id: str) -> Optional[ProcessingRecord]:
        try:
            latest_key = None
            latest_ms = -1
            pattern = f"{escape_glob(self._key(submission_id))}{HANDLE_SEPARATOR}*"
            async for key in self.redis.scan_iter(match=pattern):
                owner, created_ms = parse_handle(key[len(self._key("")):])
                if owner == submission_id and created_ms > latest_ms:
                    latest_key, latest_ms = key, created_ms
            if latest_key is None:
                return None
            data = await self.redis.get(latest_key)
            return ProcessingRecord.model_validate(json.loads(data)) if data else None
        except Exception as e:
            logger.error(f"처리 상태 조회 중 오류 발생: {str(e)}")
            raise

    async def evict_expired(self) -> int:
        # Redis TTL 이 만료를 처리
        return 0

    async def close(self) -> None:
        await self.redis.close()


class TrackerSweeper:
    """주기적으로 만료 레코드 제거"""

    def __init__(self, tracker: ProcessingTracker, interval_seconds: float):
        self.tracker = tracker
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.tracker.evict_expired()
            except Exception as e:
                logger.error(f"Processing record sweep failed: {str(e)}")

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())
            logger.info(f"Processing tracker sweep started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


def create_tracker(settings: Optional[Settings] = None) -> ProcessingTracker:
    settings = settings or default_settings
    if settings.TRACKER_BACKEND == "redis":
        return RedisProcessingTracker(
            settings.REDIS_URL,
            settings.REDIS_PREFIX,
            retention_seconds=settings.PROCESSING_RETENTION_SECONDS
        )
    return MemoryProcessingTracker(retention_seconds=settings.PROCESSING_RETENTION_SECONDS)
