from asbuilt_router.services.blob_store import (
    BlobStore,
    InMemoryBlobStore,
    LocalDirectoryBlobStore,
    build_blob_store,
)
from asbuilt_router.services.submission_orchestrator import SubmissionOrchestrator
from asbuilt_router.services.submission_service import SubmissionPackage, SubmissionService
from asbuilt_router.services.submission_store import (
    InMemorySubmissionStore,
    RedisSubmissionStore,
    SubmissionStore,
    build_submission_store,
)
from asbuilt_router.services.task_runner import BackgroundTaskRunner

__all__ = [
    "BackgroundTaskRunner",
    "BlobStore",
    "InMemoryBlobStore",
    "InMemorySubmissionStore",
    "LocalDirectoryBlobStore",
    "RedisSubmissionStore",
    "SubmissionOrchestrator",
    "SubmissionPackage",
    "SubmissionService",
    "SubmissionStore",
    "build_blob_store",
    "build_submission_store",
]
