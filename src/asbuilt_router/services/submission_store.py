from __future__ import annotations

from datetime import datetime
import logging
from threading import Lock
from typing import Protocol

from asbuilt_router.policy.section_types import SubmissionStatus
from asbuilt_router.schemas import Submission


LOGGER = logging.getLogger(__name__)


class SubmissionStore(Protocol):
    def insert(self, submission: Submission) -> None: ...

    def get(self, submission_id: str) -> Submission | None: ...

    def save(self, submission: Submission) -> None: ...

    def find(
        self,
        *,
        company_id: str,
        status: SubmissionStatus | None = None,
        created_after: datetime | None = None,
    ) -> list[Submission]: ...

    def soft_delete(self, submission_id: str) -> bool: ...

    def next_sequence(self, name: str) -> int: ...


def _matches(
    submission: Submission,
    *,
    company_id: str,
    status: SubmissionStatus | None,
    created_after: datetime | None,
) -> bool:
    if submission.is_deleted or submission.company_id != company_id:
        return False
    if status is not None and submission.status != status:
        return False
    if created_after is not None and submission.created_at < created_after:
        return False
    return True


class InMemorySubmissionStore:
    def __init__(self) -> None:
        self._lock = Lock()
        self._submissions: dict[str, Submission] = {}
        self._sequences: dict[str, int] = {}

    def insert(self, submission: Submission) -> None:
        with self._lock:
            if submission.submission_id in self._submissions:
                raise ValueError(f"Submission already exists: {submission.submission_id}")
            self._submissions[submission.submission_id] = submission.model_copy(deep=True)

    def get(self, submission_id: str) -> Submission | None:
        with self._lock:
            stored = self._submissions.get(submission_id)
            if stored is None or stored.is_deleted:
                return None
            return stored.model_copy(deep=True)

    def save(self, submission: Submission) -> None:
        with self._lock:
            self._submissions[submission.submission_id] = submission.model_copy(deep=True)

    def find(
        self,
        *,
        company_id: str,
        status: SubmissionStatus | None = None,
        created_after: datetime | None = None,
    ) -> list[Submission]:
        with self._lock:
            return [
                submission.model_copy(deep=True)
                for submission in self._submissions.values()
                if _matches(
                    submission,
                    company_id=company_id,
                    status=status,
                    created_after=created_after,
                )
            ]

    def soft_delete(self, submission_id: str) -> bool:
        with self._lock:
            stored = self._submissions.get(submission_id)
            if stored is None or stored.is_deleted:
                return False
            stored.is_deleted = True
            return True

    def next_sequence(self, name: str) -> int:
        with self._lock:
            value = self._sequences.get(name, 0) + 1
            self._sequences[name] = value
            return value


class RedisSubmissionStore:
    """Submission documents as JSON strings with a per-company id index.

    Reads degrade to "not found" when Redis is unavailable; writes and
    sequence allocation raise so a submission is never acknowledged without
    being persisted.
    """

    def __init__(self, redis_client, *, prefix: str = "asbuilt:submissions") -> None:
        self.redis_client = redis_client
        self.prefix = prefix

    def _key(self, submission_id: str) -> str:
        return f"{self.prefix}:doc:{submission_id}"

    def _company_key(self, company_id: str) -> str:
        return f"{self.prefix}:company:{company_id}"

    def _write(self, submission: Submission) -> None:
        try:
            self.redis_client.set(self._key(submission.submission_id), submission.model_dump_json())
            self.redis_client.sadd(self._company_key(submission.company_id), submission.submission_id)
        except Exception:
            LOGGER.warning(
                "Unable to persist submission in Redis",
                exc_info=True,
                extra={"submission_id": submission.submission_id},
            )
            raise

    def _decode(self, payload) -> Submission | None:
        if not payload:
            return None
        try:
            payload_text = payload.decode("utf-8") if isinstance(payload, bytes) else str(payload)
            return Submission.model_validate_json(payload_text)
        except Exception:
            LOGGER.warning("Unable to decode stored submission record", exc_info=True)
            return None

    def insert(self, submission: Submission) -> None:
        key = self._key(submission.submission_id)
        try:
            created = self.redis_client.set(key, submission.model_dump_json(), nx=True)
        except Exception:
            LOGGER.warning(
                "Unable to insert submission in Redis",
                exc_info=True,
                extra={"submission_id": submission.submission_id},
            )
            raise
        if not created:
            raise ValueError(f"Submission already exists: {submission.submission_id}")
        self._write(submission)

    def get(self, submission_id: str) -> Submission | None:
        try:
            payload = self.redis_client.get(self._key(submission_id))
        except Exception:
            LOGGER.warning(
                "Unable to read submission from Redis",
                exc_info=True,
                extra={"submission_id": submission_id},
            )
            return None
        submission = self._decode(payload)
        if submission is None or submission.is_deleted:
            return None
        return submission

    def save(self, submission: Submission) -> None:
        self._write(submission)

    def find(
        self,
        *,
        company_id: str,
        status: SubmissionStatus | None = None,
        created_after: datetime | None = None,
    ) -> list[Submission]:
        try:
            raw_ids = self.redis_client.smembers(self._company_key(company_id)) or set()
            ids = sorted(
                raw_id.decode("utf-8") if isinstance(raw_id, bytes) else str(raw_id)
                for raw_id in raw_ids
            )
            payloads = self.redis_client.mget([self._key(submission_id) for submission_id in ids]) if ids else []
        except Exception:
            LOGGER.warning(
                "Unable to query submissions from Redis",
                exc_info=True,
                extra={"company_id": company_id},
            )
            return []

        submissions: list[Submission] = []
        for payload in payloads:
            submission = self._decode(payload)
            if submission is not None and _matches(
                submission,
                company_id=company_id,
                status=status,
                created_after=created_after,
            ):
                submissions.append(submission)
        return submissions

    def soft_delete(self, submission_id: str) -> bool:
        submission = self.get(submission_id)
        if submission is None:
            return False
        submission.is_deleted = True
        self._write(submission)
        return True

    def next_sequence(self, name: str) -> int:
        try:
            return int(self.redis_client.incr(f"{self.prefix}:seq:{name}"))
        except Exception:
            LOGGER.warning(
                "Unable to allocate submission sequence from Redis",
                exc_info=True,
                extra={"sequence": name},
            )
            raise


def build_submission_store(*, redis_url: str | None) -> SubmissionStore:
    if not redis_url:
        LOGGER.info("Using in-memory submission store (redis_url not configured)")
        return InMemorySubmissionStore()

    try:
        import redis

        redis_client = redis.Redis.from_url(
            redis_url,
            socket_timeout=0.5,
            socket_connect_timeout=0.5,
        )
        redis_client.ping()
        LOGGER.info("Using Redis-backed submission store")
        return RedisSubmissionStore(redis_client)
    except Exception:
        LOGGER.warning(
            "Redis submission store unavailable; falling back to in-memory store",
            exc_info=True,
        )
        return InMemorySubmissionStore()


__all__ = [
    "InMemorySubmissionStore",
    "RedisSubmissionStore",
    "SubmissionStore",
    "build_submission_store",
]
