"""Domain types for linkgate jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Literal

DEFAULT_CONFIG_RELATIVE_PATH = Path(".linkgate/workflow.yaml")
DEFAULT_REPORT_RELATIVE_PATH = Path("out/linkgate")

READINESS_MODES: tuple[str, ...] = ("probe", "fixed")

EXIT_SUCCESS = 0
EXIT_TOOLING_ERROR = 1
EXIT_JOB_FAILED = 2
EXIT_SKIPPED = 3
EXIT_CANCELLED = 130


# Trigger events


@dataclass(frozen=True)
class PushEvent:
    """Push of one or more commits to ``branch``."""

    branch: str
    ref: str
    kind: Literal["push"] = "push"


@dataclass(frozen=True)
class PullRequestEvent:
    """Pull request update touching ``changed_paths``."""

    changed_paths: tuple[str, ...]
    ref: str
    kind: Literal["pull_request"] = "pull_request"


@dataclass(frozen=True)
class MergeGroupEvent:
    """Merge queue check for a batch of pull requests."""

    ref: str
    kind: Literal["merge_group"] = "merge_group"


TriggerEvent = PushEvent | PullRequestEvent | MergeGroupEvent


# Workflow configuration


@dataclass(frozen=True)
class TriggerRules:
    """Which events start the job.

    ``None`` for push/pull_request means the trigger is not configured at all.
    An empty ``pull_request_paths`` tuple means any path qualifies.
    """

    push_branches: tuple[str, ...] | None
    pull_request_paths: tuple[str, ...] | None
    merge_group: bool


@dataclass(frozen=True)
class ConcurrencyPolicy:
    group: str
    cancel_in_progress: bool


@dataclass(frozen=True)
class ServiceSpec:
    """How to run the containerized documentation server."""

    image: str
    container_name: str
    source_dir: str
    mount_path: str
    host_port: int
    container_port: int
    command: tuple[str, ...]
    bind_host: str


@dataclass(frozen=True)
class ReadinessPolicy:
    """How long to wait, and how, before the server is assumed to accept connections."""

    mode: str
    delay_seconds: float
    timeout_seconds: float
    initial_interval_seconds: float
    max_interval_seconds: float


@dataclass(frozen=True)
class VerifierSpec:
    """Pinned verifier release and how to invoke it."""

    name: str
    version: str
    platform: str
    url: str
    member: str
    strip_components: int
    install_dir: str
    args: tuple[str, ...]


@dataclass(frozen=True)
class WorkflowConfig:
    """Normalized linkgate workflow configuration."""

    workflow: str
    triggers: TriggerRules
    concurrency: ConcurrencyPolicy
    server: ServiceSpec
    readiness: ReadinessPolicy
    verifier: VerifierSpec
    path: Path | None = None


# Job lifecycle


class JobState(str, Enum):
    """Job state machine positions."""

    PENDING = "pending"
    RUNNING = "running"
    SKIPPED = "skipped"
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (JobState.SKIPPED, JobState.SUCCESS, JobState.FAILURE, JobState.CANCELLED)


@dataclass(frozen=True)
class ServiceHandle:
    """Owned handle for a launched documentation server container."""

    container_name: str
    container_id: str
    image: str
    host_port: int

    @property
    def target(self) -> str:
        return f"localhost:{self.host_port}"


@dataclass(frozen=True)
class VerifierOutcome:
    """Result of one verifier run; ``exit_code`` is authoritative."""

    argv: tuple[str, ...]
    exit_code: int
    output: str

    @property
    def passed(self) -> bool:
        return self.exit_code == 0


@dataclass
class JobStep:
    """Record of a single attempted step."""

    name: str
    status: Literal["ok", "failed", "cancelled"]
    detail: str = ""


@dataclass
class JobResult:
    """Outcome of a job run, the only externally observable product of a job."""

    state: JobState
    event_kind: str
    concurrency_key: str
    exit_code: int = EXIT_SUCCESS
    failed_step: str | None = None
    reason_code: str | None = None
    message: str = ""
    target: str | None = None
    service_logs: str = ""
    verifier_output: str = ""
    steps: list[JobStep] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.state in (JobState.SUCCESS, JobState.SKIPPED)
