"""
RelayQueue - background jobs that tell relayers an intent is ready to reveal.

Two job types run on a dedicated worker pool:

* ``reveal_check`` re-reads a committed intent after an optional delay and,
  when it is still committed and unexpired, schedules a notification.
* ``notify`` POSTs the intent's readiness to a webhook.

Each job retries with exponential backoff up to its attempt limit and is
then left in the ``failed`` state. Finished jobs stay readable for an hour
and are then dropped.
"""
import logging
import threading
import time
import urllib.parse
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import requests
from cachetools import TTLCache

from .exceptions import ValidationError
from .models import IntentStatus
from .retry import Fatal, Retryable, RetryPolicy, run_with_retry
from .store.repository import IntentStore
from .utils import now_ts, to_iso

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
MAX_HEALTHY_JOBS = 10_000
FINISHED_RETENTION_SECONDS = 60 * 60


class JobType(str, Enum):
    REVEAL_CHECK = "reveal_check"
    NOTIFY = "notify"


class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"


@dataclass
class Job:
    id: str
    type: JobType
    intent_hash: str
    payload: Dict[str, Any]
    max_attempts: int
    state: JobState = JobState.WAITING
    attempts: int = 0
    created_at: float = field(default_factory=time.time)
    error: Optional[str] = None
    result: Any = None
    done: threading.Event = field(default_factory=threading.Event, repr=False)
    timer: Optional[threading.Timer] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "intentHash": self.intent_hash,
            "state": self.state.value,
            "attempts": self.attempts,
            "maxAttempts": self.max_attempts,
            "error": self.error,
            "createdAt": self.created_at,
        }


def _check_webhook_url(url: str) -> None:
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("Invalid webhook URL", errors=[f"webhookUrl: must be an http(s) URL (got: {url})"])


class RelayQueue:
    """
    Thread-pool job queue for reveal checks and webhook notifications.
    """

    def __init__(
        self,
        store: IntentStore,
        workers: int = 4,
        backoff_base: float = 2.0,
        webhook_timeout: float = 10,
        session: Optional[requests.Session] = None,
        retention_seconds: float = FINISHED_RETENTION_SECONDS,
        timer=time.monotonic,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the RelayQueue

        Args:
            store: Intent store the reveal checks read from
            workers: Worker threads
            backoff_base: Delay before a job's first retry, in seconds
            webhook_timeout: Timeout for each webhook POST
            session: requests session for webhooks
            retention_seconds: How long completed and failed jobs stay visible
            timer: Clock for the retention window
            logger: Optional logger instance
        """
        self.store = store
        self.backoff_base = backoff_base
        self.webhook_timeout = webhook_timeout
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger(__name__)
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="relay-queue")
        self._jobs: Dict[str, Job] = {}
        self._finished = TTLCache(maxsize=MAX_HEALTHY_JOBS, ttl=retention_seconds, timer=timer)
        self._lock = threading.RLock()
        self._closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()

    def enqueue_reveal(
        self,
        intent_hash: str,
        webhook_url: Optional[str] = None,
        delay_seconds: float = 0,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> str:
        """
        Schedule a reveal-readiness check for a committed intent.

        Args:
            intent_hash: Intent to check
            webhook_url: Where to POST once the intent is ready
            delay_seconds: Wait before the first check
            max_retries: Attempts allowed for each job

        Returns:
            Job id
        """
        if webhook_url:
            _check_webhook_url(webhook_url)
        if max_retries < 1:
            raise ValidationError("Invalid retry limit", errors=["maxRetries: must be at least 1"])
        payload = {"intentHash": intent_hash, "webhookUrl": webhook_url, "maxRetries": max_retries}
        job = self._add(JobType.REVEAL_CHECK, intent_hash, payload, max_retries, delay_seconds)
        self.logger.info(f"Queued reveal check {job.id[:8]} for {intent_hash[:10]}... in {delay_seconds}s")
        return job.id

    def cancel_reveal(self, intent_hash: str) -> int:
        """
        Remove waiting or delayed jobs for an intent.

        Returns:
            Number of jobs removed
        """
        removed = 0
        with self._lock:
            for job_id, job in list(self._jobs.items()):
                if job.intent_hash != intent_hash or job.state not in (JobState.WAITING, JobState.DELAYED):
                    continue
                if job.timer is not None:
                    job.timer.cancel()
                del self._jobs[job_id]
                job.done.set()
                removed += 1
        if removed:
            self.logger.info(f"Cancelled {removed} job(s) for {intent_hash[:10]}...")
        return removed

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job if job is not None else self._finished.get(job_id)

    def jobs_for(self, intent_hash: str) -> List[Job]:
        return [job for job in self._all_jobs() if job.intent_hash == intent_hash]

    def wait(self, job_id: str, timeout: Optional[float] = None) -> bool:
        """Block until a job reaches a final state. Returns False on timeout."""
        job = self.get_job(job_id)
        return True if job is None else job.done.wait(timeout)

    def stats(self) -> Dict[str, Any]:
        """Job counts per state for each job type."""
        counts = {t.value: {s.value: 0 for s in JobState} for t in JobType}
        jobs = self._all_jobs()
        for job in jobs:
            counts[job.type.value][job.state.value] += 1
        counts["total"] = len(jobs)
        return counts

    def clear_jobs(self) -> int:
        """Drop completed and failed jobs. Returns how many were removed."""
        with self._lock:
            self._finished.expire()
            cleared = len(self._finished)
            self._finished.clear()
        self.logger.info(f"Cleared {cleared} finished job(s)")
        return cleared

    def health_check(self) -> bool:
        """Healthy while open and the unfinished backlog is below the limit."""
        with self._lock:
            backlog = len(self._jobs)
        return not self._closed and backlog < MAX_HEALTHY_JOBS

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
            for job in self._jobs.values():
                if job.timer is not None:
                    job.timer.cancel()
        self._executor.shutdown(wait=wait, cancel_futures=True)
        self.logger.info("Relay queue shut down")

    def _all_jobs(self) -> List[Job]:
        with self._lock:
            self._finished.expire()
            return list(self._jobs.values()) + list(self._finished.values())

    def _finish(self, job: Job, state: JobState) -> None:
        # caller holds the lock
        job.state = state
        if self._jobs.pop(job.id, None) is job:
            self._finished[job.id] = job

    def _add(self, job_type: JobType, intent_hash: str, payload: Dict[str, Any], max_attempts: int, delay: float) -> Job:
        job = Job(
            id=str(uuid.uuid4()),
            type=job_type,
            intent_hash=intent_hash,
            payload=payload,
            max_attempts=max_attempts,
        )
        with self._lock:
            if self._closed:
                raise RuntimeError("Relay queue is shut down")
            self._jobs[job.id] = job
            if delay > 0:
                job.state = JobState.DELAYED
                job.timer = threading.Timer(delay, self._release, args=(job,))
                job.timer.daemon = True
                job.timer.start()
            else:
                self._executor.submit(self._run, job)
        return job

    def _release(self, job: Job) -> None:
        with self._lock:
            if self._closed or self._jobs.get(job.id) is not job or job.state != JobState.DELAYED:
                return
            job.state = JobState.WAITING
            job.timer = None
            self._executor.submit(self._run, job)

    def _run(self, job: Job) -> None:
        with self._lock:
            if self._jobs.get(job.id) is not job or job.state != JobState.WAITING:
                return
            job.state = JobState.ACTIVE

        operation = self._check_reveal if job.type == JobType.REVEAL_CHECK else self._notify
        policy = RetryPolicy(max_attempts=job.max_attempts, backoff_base=self.backoff_base)

        def backoff(seconds: float) -> None:
            job.state = JobState.DELAYED
            time.sleep(seconds)
            job.state = JobState.ACTIVE

        def attempt(payload: Dict[str, Any], number: int):
            job.attempts = number
            return operation(payload, number)

        try:
            outcome = run_with_retry(attempt, job.payload, policy, sleep=backoff, description=f"{job.type.value} job {job.id[:8]}")
        except Exception as e:
            self.logger.exception(f"{job.type.value} job {job.id[:8]} crashed")
            with self._lock:
                job.error = str(e)
                self._finish(job, JobState.FAILED)
            job.done.set()
            return

        with self._lock:
            if outcome.succeeded:
                job.result = outcome.value
                self._finish(job, JobState.COMPLETED)
            else:
                job.error = outcome.error
                self._finish(job, JobState.FAILED)
                self.logger.error(
                    f"{job.type.value} job {job.id[:8]} for {job.intent_hash[:10]}... failed after "
                    f"{outcome.attempts} attempt(s): {outcome.error}"
                )
        job.done.set()

    def _check_reveal(self, payload: Dict[str, Any], attempt: int):
        intent_hash = payload["intentHash"]
        snapshot = self.store.get(intent_hash)
        if snapshot is None:
            return Fatal(f"Intent not found: {intent_hash[:10]}...")

        if snapshot.status == IntentStatus.REVEALED:
            self.logger.info(f"Intent {intent_hash[:10]}... already revealed, skipping")
            return {"status": "already_revealed", "revealTx": snapshot.reveal["tx"] if snapshot.reveal else None}
        if snapshot.status == IntentStatus.DRAFT:
            return Retryable(f"Intent not committed yet: {intent_hash[:10]}...")
        if snapshot.status != IntentStatus.COMMITTED:
            return Fatal(f"Intent is {snapshot.status.value}")

        if snapshot.intent.expiry <= now_ts():
            self.logger.warning(f"Intent {intent_hash[:10]}... expired before reveal")
            self.store.mark_expired(intent_hash)
            return Fatal(f"Intent expired: {intent_hash[:10]}...")

        self.logger.info(f"Intent {intent_hash[:10]}... ready for reveal")
        notify_job = None
        webhook_url = payload.get("webhookUrl")
        if webhook_url:
            notify_payload = {
                "url": webhook_url,
                "body": {
                    "event": "intent.ready_for_reveal",
                    "intentHash": intent_hash,
                    "user": snapshot.intent.user,
                    "nonce": snapshot.intent.nonce,
                    "expiry": to_iso(snapshot.intent.expiry),
                    "commitTx": snapshot.commit["tx"] if snapshot.commit else None,
                },
            }
            max_retries = payload.get("maxRetries", DEFAULT_MAX_RETRIES)
            job = self._add(JobType.NOTIFY, intent_hash, notify_payload, max_retries, 0)
            notify_job = job.id
        return {"status": "ready_for_reveal", "notifyJob": notify_job}

    def _notify(self, payload: Dict[str, Any], attempt: int):
        url = payload["url"]
        try:
            response = self.session.post(url, json=payload["body"], timeout=self.webhook_timeout)
        except requests.RequestException as e:
            return Retryable(f"Webhook request failed: {e}")

        if response.status_code == 429 or response.status_code >= 500:
            return Retryable(f"Webhook returned {response.status_code}")
        if response.status_code >= 400:
            return Fatal(f"Webhook rejected notification with {response.status_code}")
        self.logger.info(f"Notified webhook for {payload['body']['intentHash'][:10]}... ({response.status_code})")
        return {"statusCode": response.status_code}
