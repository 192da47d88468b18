"""Tests for the link-check job state machine."""

from __future__ import annotations

import threading
from dataclasses import replace
from typing import TYPE_CHECKING

from linkgate.concurrency import CancellationToken, ConcurrencyController
from linkgate.errors import (
    JOB_CANCELLED,
    SERVICE_LAUNCH_FAILED,
    SERVICE_NOT_READY,
    VERIFIER_FETCH_FAILED,
    VerifierFetchError,
)
from linkgate.exec import run_command
from linkgate.job import JOB_STEPS, event_key, run_job, run_jobs
from linkgate.types import (
    EXIT_CANCELLED,
    ConcurrencyPolicy,
    JobState,
    MergeGroupEvent,
    PullRequestEvent,
    PushEvent,
)

if TYPE_CHECKING:
    from pathlib import Path

PUSH = PushEvent(branch="unstable", ref="refs/heads/unstable")


def _no_sleep(seconds: float) -> None:
    _ = seconds


def test_push_to_designated_branch_succeeds(workspace: Path, config, docker_stub, fake_fetch) -> None:
    stub = docker_stub()
    sleeps: list[float] = []

    result = run_job(PUSH, config, workspace=workspace, runner=stub, fetch=fake_fetch, sleep=sleeps.append)

    assert result.state is JobState.SUCCESS
    assert result.exit_code == 0
    assert result.target == "localhost:3000"
    assert sleeps == [5]
    assert stub.kinds() == ["rm", "run", "logs", "verifier", "rm"]
    assert stub.calls[3][1:] == ["localhost:3000", "-d"]
    assert [s.name for s in result.steps] == list(JOB_STEPS)
    assert result.service_logs == "serving on 0.0.0.0:3000\n"
    assert result.concurrency_key == "linkcheck-refs/heads/unstable"


def test_pull_request_outside_prefix_never_launches(workspace: Path, config, docker_stub, fake_fetch) -> None:
    stub = docker_stub()
    event = PullRequestEvent(changed_paths=("src/main.rs", "README.md"), ref="refs/pull/9/merge")

    result = run_job(event, config, workspace=workspace, runner=stub, fetch=fake_fetch, sleep=_no_sleep)

    assert result.state is JobState.SKIPPED
    assert result.passed
    assert stub.calls == []
    assert result.steps == []


def test_push_to_other_branch_skips(workspace: Path, config, docker_stub, fake_fetch) -> None:
    stub = docker_stub()
    event = PushEvent(branch="stable", ref="refs/heads/stable")

    result = run_job(event, config, workspace=workspace, runner=stub, fetch=fake_fetch, sleep=_no_sleep)

    assert result.state is JobState.SKIPPED
    assert stub.calls == []


def test_merge_group_runs(workspace: Path, config, docker_stub, fake_fetch) -> None:
    stub = docker_stub()
    event = MergeGroupEvent(ref="refs/heads/gh-readonly-queue/unstable/pr-1")

    result = run_job(event, config, workspace=workspace, runner=stub, fetch=fake_fetch, sleep=_no_sleep)

    assert result.state is JobState.SUCCESS
    assert "run" in stub.kinds()


def test_container_launch_failure_skips_verification(workspace: Path, config, docker_stub) -> None:
    stub = docker_stub(codes={"run": 125})
    fetched: list[object] = []

    def fetch(spec, *, repo_root):
        fetched.append(spec)
        raise AssertionError("verifier must not be fetched")

    result = run_job(PUSH, config, workspace=workspace, runner=stub, fetch=fetch, sleep=_no_sleep)

    assert result.state is JobState.FAILURE
    assert result.failed_step == "launch-server"
    assert result.reason_code == SERVICE_LAUNCH_FAILED
    assert "verifier" not in stub.kinds()
    assert fetched == []
    # No handle was created, so there is nothing to tear down beyond the pre-launch cleanup.
    assert stub.kinds() == ["rm", "run"]


def test_verifier_non_zero_fails_with_its_exit_code(workspace: Path, config, docker_stub, fake_fetch) -> None:
    stub = docker_stub(codes={"verifier": 2})

    result = run_job(PUSH, config, workspace=workspace, runner=stub, fetch=fake_fetch, sleep=_no_sleep)

    assert result.state is JobState.FAILURE
    assert result.exit_code == 2
    assert result.failed_step == "run-verifier"
    assert result.verifier_output == "Crawling localhost:3000\n"
    assert stub.kinds()[-1] == "rm"


def test_unexecutable_verifier_fails_at_run_step(workspace: Path, config, docker_stub, tmp_path: Path) -> None:
    stub = docker_stub()
    binary = tmp_path / "bin" / "linkcheck"
    binary.parent.mkdir(parents=True)
    binary.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
    binary.chmod(0o644)

    def runner(argv, *, cwd, check=True):
        if argv[0] == str(binary):
            return run_command(argv, cwd=cwd, check=check)
        return stub(argv, cwd=cwd, check=check)

    def fetch(spec, *, repo_root):
        return binary

    result = run_job(PUSH, config, workspace=workspace, runner=runner, fetch=fetch, sleep=_no_sleep)

    assert result.state is JobState.FAILURE
    assert result.failed_step == "run-verifier"
    assert result.exit_code == 126
    assert "cannot execute" in result.verifier_output
    assert stub.kinds()[-1] == "rm"


def test_verifier_fetch_failure_fails_before_verification(workspace: Path, config, docker_stub) -> None:
    stub = docker_stub()

    def fetch(spec, *, repo_root):
        raise VerifierFetchError("failed to download")

    result = run_job(PUSH, config, workspace=workspace, runner=stub, fetch=fetch, sleep=_no_sleep)

    assert result.state is JobState.FAILURE
    assert result.failed_step == "fetch-verifier"
    assert result.reason_code == VERIFIER_FETCH_FAILED
    assert "verifier" not in stub.kinds()
    assert stub.kinds()[-1] == "rm"


def test_readiness_timeout_fails_and_keeps_logs(workspace: Path, config, docker_stub, fake_fetch) -> None:
    stub = docker_stub(logs="error: book.toml not found\n")
    probe_config = replace(config, readiness=replace(config.readiness, mode="probe", timeout_seconds=1))
    now = [0.0]

    def sleep(seconds: float) -> None:
        now[0] += seconds

    result = run_job(
        PUSH, probe_config, workspace=workspace, runner=stub, fetch=fake_fetch,
        probe=lambda url: False, sleep=sleep, clock=lambda: now[0],
    )

    assert result.state is JobState.FAILURE
    assert result.failed_step == "wait-ready"
    assert result.reason_code == SERVICE_NOT_READY
    assert result.service_logs == "error: book.toml not found\n"
    assert "verifier" not in stub.kinds()
    assert stub.kinds()[-1] == "rm"


def test_cancelled_before_start_launches_nothing(workspace: Path, config, docker_stub, fake_fetch) -> None:
    stub = docker_stub()
    token = CancellationToken(key="k")
    token.cancel()

    result = run_job(PUSH, config, workspace=workspace, token=token, runner=stub, fetch=fake_fetch, sleep=_no_sleep)

    assert result.state is JobState.CANCELLED
    assert result.exit_code == EXIT_CANCELLED
    assert result.reason_code == JOB_CANCELLED
    assert stub.calls == []


def test_cancellation_is_honored_at_next_step_boundary(workspace: Path, config, docker_stub, fake_fetch) -> None:
    stub = docker_stub()
    token = CancellationToken(key="k")

    def sleep(seconds: float) -> None:
        # Superseded during the blocking wait; the wait itself still completes.
        token.cancel()

    result = run_job(PUSH, config, workspace=workspace, token=token, runner=stub, fetch=fake_fetch, sleep=sleep)

    assert result.state is JobState.CANCELLED
    assert [s.name for s in result.steps] == ["launch-server", "wait-ready", "emit-logs"]
    assert result.steps[-1].status == "cancelled"
    assert "logs" not in stub.kinds()
    assert stub.kinds()[-1] == "rm"


def test_superseded_run_is_cancelled_and_newer_is_authoritative(workspace: Path, config, docker_stub, fake_fetch) -> None:
    controller = ConcurrencyController()
    in_verifier = threading.Event()
    release = threading.Event()
    first_stub = docker_stub(codes={"verifier": 1})

    def block() -> None:
        in_verifier.set()
        release.wait(timeout=10)

    first_stub.before["verifier"] = block

    key = event_key(PUSH, config)
    first_token = controller.acquire(key)
    first_result: dict[str, object] = {}

    def _first() -> None:
        first_result["r"] = run_job(
            PUSH, config, workspace=workspace, token=first_token,
            runner=first_stub, fetch=fake_fetch, sleep=_no_sleep,
        )

    thread = threading.Thread(target=_first)
    thread.start()
    assert in_verifier.wait(timeout=10)

    second_token = controller.acquire(key)
    assert first_token.cancelled

    release.set()
    thread.join(timeout=10)

    second = run_job(
        PUSH, config, workspace=workspace, token=second_token,
        runner=docker_stub(), fetch=fake_fetch, sleep=_no_sleep,
    )

    assert first_result["r"].state is JobState.CANCELLED
    assert second.state is JobState.SUCCESS


def test_run_jobs_gated_events_take_no_slot(workspace: Path, config, docker_stub, fake_fetch) -> None:
    stub = docker_stub()
    skipped = PullRequestEvent(changed_paths=("src/x.rs",), ref="refs/pull/1/merge")
    other = MergeGroupEvent(ref="refs/heads/gh-readonly-queue/unstable/pr-2")
    controller = ConcurrencyController()
    acquired: list[str] = []
    real_acquire = controller.acquire

    def acquire(key: str) -> CancellationToken:
        acquired.append(key)
        token = real_acquire(key)
        return token

    controller.acquire = acquire  # type: ignore[method-assign]

    results = run_jobs(
        [skipped, other], config, workspace=workspace, controller=controller,
        runner=stub, fetch=fake_fetch, sleep=_no_sleep,
    )

    assert [r.state for r in results] == [JobState.SKIPPED, JobState.SUCCESS]
    assert acquired == ["linkcheck-refs/heads/gh-readonly-queue/unstable/pr-2"]
    assert controller.keys() == []


def test_run_jobs_supersedes_earlier_event_on_same_key(workspace: Path, config, docker_stub, fake_fetch) -> None:
    gate = threading.Event()
    stub = docker_stub()
    stub.before["run"] = lambda: gate.wait(timeout=10)
    config = replace(config, concurrency=ConcurrencyPolicy(group="{workflow}", cancel_in_progress=True))
    events = [PUSH, MergeGroupEvent(ref="refs/heads/gh-readonly-queue/unstable/pr-3")]

    controller = ConcurrencyController()
    real_acquire = controller.acquire
    count = [0]

    def acquire(key: str) -> CancellationToken:
        token = real_acquire(key)
        count[0] += 1
        if count[0] == len(events):
            gate.set()
        return token

    controller.acquire = acquire  # type: ignore[method-assign]

    results = run_jobs(events, config, workspace=workspace, controller=controller,
                       runner=stub, fetch=fake_fetch, sleep=_no_sleep)

    assert results[0].state is JobState.CANCELLED
    assert results[1].state is JobState.SUCCESS
    assert results[0].concurrency_key == results[1].concurrency_key == "linkcheck"
