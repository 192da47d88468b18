"""Ephemeral documentation server: launch, readiness, logs, teardown.

The container is always addressed through an owned ``ServiceHandle``
returned by ``launch``; nothing here looks a container up by a global name.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from pathlib import Path

import requests

from linkgate.errors import SERVICE_LAUNCH_FAILED, SERVICE_NOT_READY, ServiceLaunchError, ServiceNotReady
from linkgate.exec import CommandRunner, ExecError, run_command
from linkgate.types import ReadinessPolicy, ServiceHandle, ServiceSpec

logger = logging.getLogger(__name__)

LINKGATE_DOCKER_ENV = "LINKGATE_DOCKER"

Probe = Callable[[str], bool]


def docker_binary() -> str:
    return os.getenv(LINKGATE_DOCKER_ENV, "").strip() or "docker"


def build_run_argv(spec: ServiceSpec, *, workspace: Path) -> list[str]:
    """Build the detached ``docker run`` invocation for ``spec``."""
    host_dir = (workspace / spec.source_dir).resolve()
    return [
        docker_binary(),
        "run",
        "-v",
        f"{host_dir}:{spec.mount_path}",
        "--name",
        spec.container_name,
        "-p",
        f"{spec.host_port}:{spec.container_port}",
        "-d",
        spec.image,
        *spec.command,
        "--hostname",
        spec.bind_host,
    ]


def launch(
    spec: ServiceSpec,
    *,
    workspace: Path,
    runner: CommandRunner = run_command,
) -> ServiceHandle:
    """Start the server container and return its handle.

    A leftover container with the same name is removed first.

    Raises:
        ServiceLaunchError: If ``docker run`` exits non-zero
    """
    host_dir = workspace / spec.source_dir
    if not host_dir.is_dir():
        raise ServiceLaunchError(f"source directory not found: {host_dir}", SERVICE_LAUNCH_FAILED)

    runner([docker_binary(), "rm", "-f", spec.container_name], cwd=workspace, check=False)

    argv = build_run_argv(spec, workspace=workspace)
    logger.info("starting %s as %s on port %d", spec.image, spec.container_name, spec.host_port)
    try:
        result = runner(argv, cwd=workspace, check=True)
    except ExecError as exc:
        raise ServiceLaunchError(str(exc), SERVICE_LAUNCH_FAILED) from exc

    return ServiceHandle(
        container_name=spec.container_name,
        container_id=result.stdout.strip(),
        image=spec.image,
        host_port=spec.host_port,
    )


def fetch_logs(
    handle: ServiceHandle,
    *,
    workspace: Path,
    runner: CommandRunner = run_command,
) -> str:
    """Return the container's log output; best effort, never raises on exit status."""
    result = runner([docker_binary(), "logs", handle.container_name], cwd=workspace, check=False)
    if result.returncode != 0:
        logger.warning("docker logs %s exited %d", handle.container_name, result.returncode)
    return result.output


def teardown(
    handle: ServiceHandle,
    *,
    workspace: Path,
    runner: CommandRunner = run_command,
) -> None:
    """Force-remove the container, releasing its host port."""
    result = runner([docker_binary(), "rm", "-f", handle.container_name], cwd=workspace, check=False)
    if result.returncode != 0:
        logger.warning("failed to remove container %s: %s", handle.container_name, result.output.strip())


def wait_fixed(delay_seconds: float, *, sleep: Callable[[float], None] = time.sleep) -> None:
    """Block for a fixed delay. Does not observe cancellation mid-wait."""
    if delay_seconds > 0:
        sleep(delay_seconds)


def http_probe(url: str) -> bool:
    """Return True once ``url`` answers with a non-5xx status."""
    try:
        response = requests.get(url, timeout=2, allow_redirects=True)
    except requests.RequestException:
        return False
    return response.status_code < 500


def wait_until_ready(
    host: str,
    port: int,
    *,
    timeout: float,
    initial_interval: float,
    max_interval: float,
    probe: Probe = http_probe,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """Poll ``http://host:port/`` with exponential backoff until it answers.

    Returns:
        Number of probe attempts made

    Raises:
        ServiceNotReady: If no successful probe happens within ``timeout`` seconds
    """
    url = f"http://{host}:{port}/"
    deadline = clock() + timeout
    interval = initial_interval
    attempts = 0

    while True:
        attempts += 1
        if probe(url):
            logger.info("%s ready after %d probe(s)", url, attempts)
            return attempts
        remaining = deadline - clock()
        if remaining <= 0:
            raise ServiceNotReady(
                f"{url} not ready after {timeout:g}s ({attempts} probe(s))",
                SERVICE_NOT_READY,
            )
        sleep(min(interval, remaining))
        interval = min(interval * 2, max_interval)


def wait_ready(
    handle: ServiceHandle,
    policy: ReadinessPolicy,
    *,
    probe: Probe = http_probe,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> str:
    """Apply the configured readiness policy; returns a short description."""
    if policy.mode == "fixed":
        wait_fixed(policy.delay_seconds, sleep=sleep)
        return f"waited {policy.delay_seconds:g}s"

    attempts = wait_until_ready(
        "localhost",
        handle.host_port,
        timeout=policy.timeout_seconds,
        initial_interval=policy.initial_interval_seconds,
        max_interval=policy.max_interval_seconds,
        probe=probe,
        sleep=sleep,
        clock=clock,
    )
    return f"ready after {attempts} probe(s)"
