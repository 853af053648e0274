"""
Cross-region replication jobs.

A job copies a list of object paths from ``<source>/<path>`` to
``<target>/<path>`` for every target region. Jobs are queued and executed by
worker threads; callers get the job record back immediately and poll
``get_job_status`` (or block on ``wait``) for the outcome.

Partial failure is expected: missing sources and failed writes are recorded in
``job.errors`` and the job carries on. A job with any error ends ``failed``.
"""
import logging
import queue
import threading
from collections import deque
from typing import Optional, Dict, List

from pydantic import ValidationError

from geocdn.config import settings
from geocdn.errors import (
    StoreError, ReplicationSourceMissing, ReplicationWriteFailure
)
from geocdn.kv import KeyValueStore
from geocdn.metrics import replication_jobs_total, replication_objects_total
from geocdn.models import JobStatus, ReplicationJob, utcnow
from geocdn.objects import ObjectStore

logger = logging.getLogger(__name__)

JOB_PREFIX = "replication:"

_STOP = object()


class CrossRegionReplicator:
    """
    Owns the in-memory job table and the worker threads.

    Finished jobs stay in memory up to `retain` entries, oldest dropped first;
    older ones are read back from their persisted record.
    """

    def __init__(self, kv: KeyValueStore, objects: ObjectStore,
                 workers: Optional[int] = None, ttl: Optional[int] = None,
                 retain: Optional[int] = None):
        self.kv = kv
        self.objects = objects
        self.worker_count = max(1, workers or settings.replication_workers)
        self.ttl = ttl or settings.replication_ttl
        self.retain = settings.replication_retained_jobs if retain is None else retain
        self._jobs: Dict[str, ReplicationJob] = {}
        self._done: Dict[str, threading.Event] = {}
        self._finished: deque = deque()
        self._lock = threading.Lock()
        self._queue: "queue.Queue" = queue.Queue()
        self._threads: List[threading.Thread] = []

    # Worker lifecycle

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self):
        """Start the worker threads that drain the job queue"""
        if self.running:
            return
        self._threads = [
            threading.Thread(target=self._worker_loop, name=f"replication-{i}", daemon=True)
            for i in range(self.worker_count)
        ]
        for thread in self._threads:
            thread.start()
        logger.info(f"Replication workers started: {self.worker_count}")

    def stop(self, timeout: Optional[float] = None):
        """Let queued jobs finish, then stop the workers"""
        for _ in self._threads:
            self._queue.put(_STOP)
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        logger.info("Replication workers stopped")

    def _worker_loop(self):
        while True:
            job_id = self._queue.get()
            try:
                if job_id is _STOP:
                    return
                self.run_job(job_id)
            finally:
                self._queue.task_done()

    # Public API

    def start_replication(self, source_region: str, target_regions: List[str],
                          paths: List[str]) -> ReplicationJob:
        """Register a pending job and queue it; does not wait for the copy"""
        job = ReplicationJob(
            source_region=source_region,
            target_regions=list(target_regions),
            paths=list(paths),
        )
        with self._lock:
            self._jobs[job.id] = job
            self._done[job.id] = threading.Event()
            snapshot = job.model_copy(deep=True)

        self._queue.put(job.id)
        logger.info(
            f"Replication job {job.id} queued: {len(job.paths)} paths "
            f"from {source_region} to {', '.join(job.target_regions)}"
        )
        return snapshot

    def get_job_status(self, job_id: str) -> Optional[ReplicationJob]:
        """Live view of a job run by this process, else its persisted record"""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None:
                return job.model_copy(deep=True)
        return self.get_persisted_job(job_id)

    def wait(self, job_id: str, timeout: Optional[float] = None) -> Optional[ReplicationJob]:
        """Block until the job is terminal (or timeout), then return its record"""
        with self._lock:
            done = self._done.get(job_id)
        if done is None:
            return self.get_persisted_job(job_id)
        done.wait(timeout)
        return self.get_job_status(job_id)

    def get_persisted_job(self, job_id: str) -> Optional[ReplicationJob]:
        """Job record from the durable store, e.g. after a restart"""
        return self._load_job(f"{JOB_PREFIX}{job_id}")

    def list_jobs(self, limit: int = 50) -> List[ReplicationJob]:
        """Persisted (terminal) jobs, newest first"""
        jobs = []
        for key in self.kv.list(JOB_PREFIX):
            job = self._load_job(key)
            if job is not None and job.is_terminal():
                jobs.append(job)

        jobs.sort(key=lambda job: job.started_at, reverse=True)
        return jobs[:limit]

    def _load_job(self, key: str) -> Optional[ReplicationJob]:
        data = self.kv.get(key)
        if data is None:
            return None  # expired or never persisted
        try:
            return ReplicationJob.model_validate_json(data)
        except ValidationError as e:
            logger.warning(f"Skipping unreadable job record {key}: {e}")
            return None

    # Execution

    def run_job(self, job_id: str) -> None:
        """Execute a queued job to completion in the calling thread"""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PENDING:
                return
            job.status = JobStatus.RUNNING

        try:
            self._replicate(job)
        except Exception as e:
            logger.exception(f"Replication job {job.id} aborted")
            self._add_error(job, f"Replication aborted: {e}")

        with self._lock:
            job.status = JobStatus.FAILED if job.errors else JobStatus.COMPLETED
            job.progress = 100
            job.completed_at = utcnow()
            record = job.model_dump_json()

        replication_jobs_total.labels(status=job.status.value).inc()
        logger.info(f"Replication job {job.id} {job.status.value} with {len(job.errors)} errors")

        try:
            self.kv.put(f"{JOB_PREFIX}{job.id}", record, ttl=self.ttl)
        except StoreError as e:
            logger.error(f"Failed to persist replication job {job.id}: {e}")
        finally:
            self._done[job.id].set()
            self._retire(job.id)

    def _retire(self, job_id: str) -> None:
        with self._lock:
            self._finished.append(job_id)
            while len(self._finished) > self.retain:
                old = self._finished.popleft()
                self._jobs.pop(old, None)
                self._done.pop(old, None)

    def _replicate(self, job: ReplicationJob) -> None:
        total = len(job.paths) * len(job.target_regions)
        completed = 0

        for path in job.paths:
            source_key = f"{job.source_region}/{path}"
            try:
                source = self.objects.get(source_key)
            except StoreError as e:
                source = None
                self._add_error(job, f"Failed to read {path} from {job.source_region}: {e}")
            else:
                if source is None:
                    self._add_error(job, str(ReplicationSourceMissing(path)))

            if source is None:
                completed += len(job.target_regions)
                self._set_progress(job, completed, total)
                continue

            for target in job.target_regions:
                metadata = dict(source.custom_metadata)
                metadata.update({
                    "replicated_from": job.source_region,
                    "replicated_at": utcnow().isoformat(),
                    "replication_job_id": job.id,
                })
                try:
                    self.objects.put(
                        f"{target}/{path}",
                        source.content,
                        content_type=source.content_type,
                        custom_metadata=metadata,
                    )
                    replication_objects_total.labels(outcome="success").inc()
                except StoreError as e:
                    replication_objects_total.labels(outcome="failure").inc()
                    self._add_error(job, str(ReplicationWriteFailure(path, target, str(e))))

                completed += 1
                self._set_progress(job, completed, total)

    def _add_error(self, job: ReplicationJob, message: str):
        logger.warning(f"Replication job {job.id}: {message}")
        with self._lock:
            job.errors.append(message)

    def _set_progress(self, job: ReplicationJob, completed: int, total: int):
        with self._lock:
            # Half rounds up
            job.progress = int(completed * 100 / total + 0.5) if total else 100
