"""Trigger-gated link-check job.

State machine::

    pending -> skipped
    pending -> running -> launch-server -> wait-ready -> emit-logs
            -> fetch-verifier -> run-verifier -> success | failure
    running -> cancelled   (observed at any step boundary)

The container handle is owned by the job and torn down on every exit path
once launched.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from linkgate.concurrency import CancellationToken, ConcurrencyController, concurrency_key
from linkgate.errors import JobCancelled, LinkgateError
from linkgate.exec import CommandRunner, run_command
from linkgate.service import Probe, fetch_logs, http_probe, launch, teardown, wait_ready
from linkgate.triggers import should_run
from linkgate.types import (
    EXIT_CANCELLED,
    EXIT_SUCCESS,
    EXIT_TOOLING_ERROR,
    JobResult,
    JobState,
    JobStep,
    ServiceHandle,
    TriggerEvent,
    WorkflowConfig,
)
from linkgate.verifier import fetch_verifier, run_verifier

logger = logging.getLogger(__name__)

STEP_LAUNCH = "launch-server"
STEP_WAIT = "wait-ready"
STEP_LOGS = "emit-logs"
STEP_FETCH = "fetch-verifier"
STEP_VERIFY = "run-verifier"

JOB_STEPS: tuple[str, ...] = (STEP_LAUNCH, STEP_WAIT, STEP_LOGS, STEP_FETCH, STEP_VERIFY)

VerifierFetcher = Callable[..., Path]


def event_key(event: TriggerEvent, config: WorkflowConfig) -> str:
    return concurrency_key(config.concurrency.group, workflow=config.workflow, ref=event.ref)


def run_job(
    event: TriggerEvent,
    config: WorkflowConfig,
    *,
    workspace: Path,
    token: CancellationToken | None = None,
    runner: CommandRunner = run_command,
    fetch: VerifierFetcher = fetch_verifier,
    probe: Probe = http_probe,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> JobResult:
    """Run one link-check job for ``event`` and return its terminal result.

    Args:
        event: Incoming repository event
        config: Normalized workflow configuration
        workspace: Checked-out repository root
        token: Cancellation token from the concurrency controller
        runner: Subprocess runner (stubbed in tests)
        fetch: Verifier downloader, called as ``fetch(spec, repo_root=workspace)``
        probe: Readiness probe used in ``probe`` mode
        sleep: Blocking sleep used for delays and backoff
        clock: Monotonic clock used for the readiness deadline

    Returns:
        JobResult in a terminal state
    """
    key = event_key(event, config)
    result = JobResult(state=JobState.PENDING, event_kind=event.kind, concurrency_key=key)

    if not should_run(event, config.triggers):
        logger.info("%s event does not match triggers; skipping", event.kind)
        result.state = JobState.SKIPPED
        result.message = f"{event.kind} event does not match workflow triggers"
        return result

    result.state = JobState.RUNNING
    handle: ServiceHandle | None = None
    current = STEP_LAUNCH

    try:
        _checkpoint(token, current)
        handle = launch(config.server, workspace=workspace, runner=runner)
        result.target = handle.target
        _record(result, current, f"{handle.container_name} ({handle.image})")

        current = STEP_WAIT
        _checkpoint(token, current)
        detail = wait_ready(handle, config.readiness, probe=probe, sleep=sleep, clock=clock)
        _record(result, current, detail)

        current = STEP_LOGS
        _checkpoint(token, current)
        result.service_logs = fetch_logs(handle, workspace=workspace, runner=runner)
        _record(result, current, f"{len(result.service_logs.splitlines())} line(s)")

        current = STEP_FETCH
        _checkpoint(token, current)
        binary = fetch(config.verifier, repo_root=workspace)
        _record(result, current, str(binary))

        current = STEP_VERIFY
        _checkpoint(token, current)
        outcome = run_verifier(binary, handle.target, config.verifier, cwd=workspace, runner=runner)
        result.verifier_output = outcome.output

        # A run superseded while the verifier ran is not authoritative.
        _checkpoint(token, None)

        if outcome.passed:
            _record(result, current, "no broken links")
            result.state = JobState.SUCCESS
            result.exit_code = EXIT_SUCCESS
            result.message = "no broken links found"
        else:
            _record(result, current, f"exit {outcome.exit_code}", status="failed")
            result.state = JobState.FAILURE
            result.exit_code = outcome.exit_code
            result.failed_step = current
            result.message = f"{config.verifier.name} exited {outcome.exit_code}"

    except JobCancelled as exc:
        logger.info("job %s cancelled: %s", key, exc)
        result.steps.append(JobStep(name=current, status="cancelled", detail=str(exc)))
        result.state = JobState.CANCELLED
        result.exit_code = EXIT_CANCELLED
        result.reason_code = exc.reason_code
        result.message = str(exc)

    except LinkgateError as exc:
        logger.error("step %s failed: %s", current, exc)
        result.steps.append(JobStep(name=current, status="failed", detail=str(exc)))
        result.state = JobState.FAILURE
        result.exit_code = EXIT_TOOLING_ERROR
        result.failed_step = current
        result.reason_code = exc.reason_code
        result.message = str(exc)
        if handle is not None and not result.service_logs:
            result.service_logs = fetch_logs(handle, workspace=workspace, runner=runner)

    finally:
        if handle is not None:
            teardown(handle, workspace=workspace, runner=runner)

    return result


def run_jobs(
    events: Sequence[TriggerEvent],
    config: WorkflowConfig,
    *,
    workspace: Path,
    controller: ConcurrencyController | None = None,
    **job_kwargs: Any,
) -> list[JobResult]:
    """Run jobs for ``events`` concurrently, one thread each, in arrival order.

    Events that do not pass the trigger gate never take a concurrency slot.
    Each later event on a key supersedes the earlier in-flight run.
    """
    ctl = controller or ConcurrencyController(cancel_in_progress=config.concurrency.cancel_in_progress)
    results: list[JobResult | None] = [None] * len(events)
    errors: list[BaseException] = []
    threads: list[threading.Thread] = []

    for index, event in enumerate(events):
        if not should_run(event, config.triggers):
            results[index] = run_job(event, config, workspace=workspace, **job_kwargs)
            continue

        key = event_key(event, config)
        token = ctl.acquire(key)

        def _target(i: int = index, ev: TriggerEvent = event, tok: CancellationToken = token, k: str = key) -> None:
            try:
                results[i] = run_job(ev, config, workspace=workspace, token=tok, **job_kwargs)
            except Exception as exc:
                errors.append(exc)
            finally:
                ctl.release(k, tok)

        thread = threading.Thread(target=_target, name=f"linkgate-{index}", daemon=True)
        threads.append(thread)
        thread.start()

    for thread in threads:
        thread.join()

    if errors:
        raise errors[0]
    return [r for r in results if r is not None]


def _checkpoint(token: CancellationToken | None, step: str | None) -> None:
    if token is not None:
        token.raise_if_cancelled(step)


def _record(result: JobResult, name: str, detail: str, status: str = "ok") -> None:
    result.steps.append(JobStep(name=name, status=status, detail=detail))  # type: ignore[arg-type]
