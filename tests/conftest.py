"""Pytest configuration and fixtures for linkgate tests."""
from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from linkgate.config import default_config
from linkgate.exec import ExecError, ExecResult
from linkgate.types import ReadinessPolicy, WorkflowConfig


def pytest_sessionfinish(session, exitstatus):
    """Check that coverage data was collected if --cov was requested.

    This prevents silent "no data collected" scenarios that produce 0% coverage
    without failing the test run.
    """
    cov_enabled = any("--cov" in str(arg) for arg in session.config.args)
    if not cov_enabled:
        return

    coverage_files = list(Path.cwd().glob(".coverage*"))
    if not coverage_files:
        pytest.exit(
            "Coverage was enabled but no data was collected. "
            "Check that tests import from 'linkgate' (the package) not 'src/linkgate' (filesystem path).",
            returncode=1,
        )


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("LINKGATE_CONFIG", "LINKGATE_DOCKER", "GITHUB_EVENT_NAME", "GITHUB_EVENT_PATH"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("LINKGATE_NEON", "0")


class DockerStub:
    """Records every command and answers by subcommand.

    ``codes`` maps ``run``/``logs``/``rm``/``verifier`` to an exit code.
    """

    def __init__(self, codes: dict[str, int] | None = None, logs: str = "serving on 0.0.0.0:3000\n"):
        self.codes = codes or {}
        self.logs = logs
        self.calls: list[list[str]] = []
        self.before: dict[str, object] = {}

    def kind(self, argv: list[str]) -> str:
        if argv[0] == "docker":
            return argv[1]
        return "verifier"

    def kinds(self) -> list[str]:
        return [self.kind(argv) for argv in self.calls]

    def __call__(self, argv: list[str], *, cwd: Path, check: bool = True) -> ExecResult:
        self.calls.append(list(argv))
        kind = self.kind(argv)
        hook = self.before.get(kind)
        if callable(hook):
            hook()
        code = self.codes.get(kind, 0)
        stdout = {
            "run": "c0ffee\n" if code == 0 else "",
            "logs": self.logs,
            "verifier": "Crawling localhost:3000\n",
        }.get(kind, "")
        stderr = "docker: Error response from daemon\n" if code != 0 and kind == "run" else ""
        result = ExecResult(argv=tuple(argv), cwd=cwd, returncode=code, stdout=stdout, stderr=stderr)
        if check and code != 0:
            raise ExecError(result)
        return result


@pytest.fixture
def docker_stub() -> type[DockerStub]:
    return DockerStub


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "repo"
    (root / "book" / "src").mkdir(parents=True)
    (root / "book" / "book.toml").write_text("[book]\ntitle = \"Docs\"\n", encoding="utf-8")
    return root


@pytest.fixture
def config() -> WorkflowConfig:
    """Default config with a fixed readiness delay so no probe is needed."""
    base = default_config()
    return replace(
        base,
        readiness=ReadinessPolicy(
            mode="fixed",
            delay_seconds=5,
            timeout_seconds=60,
            initial_interval_seconds=0.5,
            max_interval_seconds=5,
        ),
    )


@pytest.fixture
def fake_fetch(tmp_path: Path):
    """Verifier fetcher that never touches the network."""
    binary = tmp_path / "bin" / "linkcheck"

    def _fetch(spec, *, repo_root):
        binary.parent.mkdir(parents=True, exist_ok=True)
        binary.write_text("#!/bin/sh\n", encoding="utf-8")
        return binary

    return _fetch
