"""
Payroll job registry and runner.

Each submitted scrape becomes a Job processed by its own background thread.
Callers only ever see snapshots (plain dicts) of a job; the thread processing
a job is the only writer of its record, and goes through JobRegistry.update.

Lifecycle:
    pending -> auth_wait -> fetching -> completed
    (any non-terminal state) -> error
"""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields
from typing import Any

from ehr_auth import EhrAuthenticator
from ehr_client import EhrClient
from payroll_collector import PayrollCollector
from payroll_normalizer import Summary, Transaction, compute_summary
from payroll_request import ScrapeRequest, build_scrape_request

STATUS_PENDING = "pending"
STATUS_AUTH_WAIT = "auth_wait"
STATUS_FETCHING = "fetching"
STATUS_COMPLETED = "completed"
STATUS_ERROR = "error"

TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_ERROR})

# Jobs untouched for longer than this are dropped on the next poll
DEFAULT_RETENTION_SECONDS = 30 * 60


@dataclass
class Job:
    id: str
    status: str = STATUS_PENDING
    message: str = "Preparing job..."
    total_months: int = 0
    processed_months: int = 0
    transactions: list[Transaction] = field(default_factory=list)
    summary: Summary | None = None
    error: str | None = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def snapshot(self) -> dict[str, Any]:
        """
        Read-only projection of the job.

        Transactions are only included once the job has completed; partial
        results are never handed out.
        """
        data: dict[str, Any] = {
            "id": self.id,
            "status": self.status,
            "message": self.message,
            "total_months": self.total_months,
            "processed_months": self.processed_months,
            "summary": self.summary.to_dict() if self.summary else None,
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if self.status == STATUS_COMPLETED:
            data["transactions"] = [txn.to_dict() for txn in self.transactions]
        return data


JOB_FIELDS = {f.name for f in fields(Job)} - {"id", "created_at", "updated_at"}

JobRunner = Callable[["JobRegistry", str, ScrapeRequest], None]


class JobRegistry:
    """
    Process-wide map of job id to Job.

    Construct one at startup and hand it to whatever submits or serves jobs.
    The lock only guards the map and field merges; all portal I/O happens in
    the per-job threads outside of it.
    """

    def __init__(
        self,
        runner: JobRunner | None = None,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
    ) -> None:
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()
        self._runner = runner or run_payroll_job
        self.retention_seconds = retention_seconds

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._jobs

    def create(self, request: ScrapeRequest) -> dict[str, Any]:
        """Register a new job, start its thread and return the initial snapshot."""
        job = Job(id=str(uuid.uuid4()), total_months=request.total_months)
        with self._lock:
            self._jobs[job.id] = job
            snapshot = job.snapshot()

        thread = threading.Thread(
            target=self._run,
            args=(job.id, request),
            name=f"payroll-job-{job.id[:8]}",
            daemon=True,
        )
        thread.start()
        return snapshot

    def _run(self, job_id: str, request: ScrapeRequest) -> None:
        try:
            self._runner(self, job_id, request)
        except Exception as e:
            self.fail(job_id, e)

    def get(self, job_id: str) -> dict[str, Any] | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.snapshot() if job else None

    def update(self, job_id: str, **changes: Any) -> None:
        """
        Merge fields into a job and refresh its updated_at.

        Unknown job ids and jobs already in a terminal state are left alone.
        """
        unknown = set(changes) - JOB_FIELDS
        if unknown:
            raise AttributeError(f"Unknown job fields: {sorted(unknown)}")

        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                return
            for name, value in changes.items():
                setattr(job, name, value)
            job.updated_at = time.time()

    def fail(self, job_id: str, error: BaseException | str) -> None:
        message = str(error) or type(error).__name__
        self.update(
            job_id,
            status=STATUS_ERROR,
            message=f"Job failed: {message}",
            error=message,
        )

    def progress_for(self, job_id: str) -> Callable[..., None]:
        """Return an update callback bound to one job."""

        def progress(**changes: Any) -> None:
            self.update(job_id, **changes)

        return progress

    def evict_stale(self, max_age_seconds: float | None = None, now: float | None = None) -> int:
        """
        Drop jobs whose last update is older than max_age_seconds.

        Returns the number of jobs removed.
        """
        max_age = self.retention_seconds if max_age_seconds is None else max_age_seconds
        current = time.time() if now is None else now
        with self._lock:
            stale = [job_id for job_id, job in self._jobs.items() if current - job.updated_at > max_age]
            for job_id in stale:
                del self._jobs[job_id]
        return len(stale)


def run_payroll_job(
    registry: JobRegistry,
    job_id: str,
    request: ScrapeRequest,
    client_factory: Callable[[], EhrClient] = EhrClient,
    verbose: bool = False,
    delay_seconds: float = 0.2,
) -> None:
    """
    Process one job from login to final summary.

    Every fatal error (missing login token, rejected credentials, approval
    timeout, transport failure during login) ends the job in the error state.
    The session is discarded when the job ends either way.
    """
    progress = registry.progress_for(job_id)
    client = None
    try:
        progress(status=STATUS_PENDING, message="Connecting to the login page...")
        client = client_factory()

        authenticator = EhrAuthenticator(client, request, progress=progress, verbose=verbose)
        csrf = authenticator.authenticate()

        collector = PayrollCollector(
            client,
            request,
            csrf,
            progress=progress,
            delay_seconds=delay_seconds,
            verbose=verbose,
        )
        transactions = collector.collect()

        summary = compute_summary(transactions)
        progress(
            status=STATUS_COMPLETED,
            message=f"Done! Collected {summary.count} transactions.",
            transactions=transactions,
            summary=summary,
            processed_months=request.total_months,
            total_months=request.total_months,
        )
    except Exception as e:
        registry.fail(job_id, e)
    finally:
        if client is not None:
            client.close()


def submit_scrape(registry: JobRegistry, payload: Mapping[str, Any]) -> dict[str, Any]:
    """
    Validate caller input and start a job.

    Raises InvalidRequestError before any job is created when credentials are
    missing or no period is selected.
    """
    request = build_scrape_request(payload)
    return registry.create(request)


def poll_job(registry: JobRegistry, job_id: str) -> dict[str, Any] | None:
    """Return the job snapshot (None if unknown or evicted) and evict stale jobs."""
    snapshot = registry.get(job_id)
    registry.evict_stale()
    return snapshot
