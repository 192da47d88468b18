"""Load and validate linkgate workflow configuration."""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from linkgate.concurrency import concurrency_key
from linkgate.errors import CONFIG_INVALID, CONFIG_MISSING, CONFIG_PARSE_ERROR, ConfigError
from linkgate.schemas import validate_data
from linkgate.types import (
    DEFAULT_CONFIG_RELATIVE_PATH,
    ConcurrencyPolicy,
    ReadinessPolicy,
    ServiceSpec,
    TriggerRules,
    VerifierSpec,
    WorkflowConfig,
)

LINKGATE_CONFIG_ENV = "LINKGATE_CONFIG"

# Keep this literal deterministic and sorted in write path.
WORKFLOW_CONFIG_TEMPLATE: dict[str, Any] = {
    "workflow": "linkcheck",
    "triggers": {
        "push": {"branches": ["unstable"]},
        "pull_request": {"paths": ["book/**"]},
        "merge_group": True,
    },
    "concurrency": {
        "group": "{workflow}-{ref}",
        "cancel_in_progress": True,
    },
    "server": {
        "image": "peaceiris/mdbook:latest",
        "container_name": "book",
        "source_dir": "book",
        "mount_path": "/book",
        "host_port": 3000,
        "container_port": 3000,
        "command": ["serve"],
        "bind_host": "0.0.0.0",
    },
    "readiness": {
        "mode": "probe",
        "delay_seconds": 5,
        "timeout_seconds": 60,
        "initial_interval_seconds": 0.5,
        "max_interval_seconds": 5,
    },
    "verifier": {
        "name": "linkcheck",
        "version": "3.0.0",
        "platform": "linux-x64",
        "url": (
            "https://github.com/filiph/linkcheck/releases/download/"
            "{version}/linkcheck-{version}-{platform}.tar.gz"
        ),
        "member": "linkcheck/linkcheck",
        "strip_components": 1,
        "install_dir": ".linkgate/bin",
        "args": ["-d"],
    },
}


def config_path_for_repo(repo_root: Path) -> Path:
    """Return the config file path, honoring ``LINKGATE_CONFIG``."""
    env_path = os.getenv(LINKGATE_CONFIG_ENV, "").strip()
    if env_path:
        candidate = Path(env_path).expanduser()
        return candidate if candidate.is_absolute() else (repo_root / candidate).resolve()
    return repo_root.resolve() / DEFAULT_CONFIG_RELATIVE_PATH


def ensure_default_config(repo_root: Path, *, force: bool = False) -> Path:
    """Create default workflow YAML deterministically."""
    output_path = config_path_for_repo(repo_root)
    if output_path.exists() and not force:
        raise FileExistsError(f"Workflow config already exists: {output_path}")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    rendered = yaml.safe_dump(WORKFLOW_CONFIG_TEMPLATE, sort_keys=True)
    output_path.write_text(rendered, encoding="utf-8")
    return output_path


def default_config() -> WorkflowConfig:
    """Return the built-in configuration used when no file is present."""
    return config_from_dict(copy.deepcopy(WORKFLOW_CONFIG_TEMPLATE))


def load_config(repo_root: Path, *, path: Path | None = None, required: bool = False) -> WorkflowConfig:
    """Load, normalize, and validate workflow config.

    Args:
        repo_root: Repository root used to resolve the default config location
        path: Explicit config path (overrides env and default location)
        required: Raise instead of falling back to defaults when the file is missing

    Raises:
        ConfigError: If the file is missing (when required), malformed, or invalid
    """
    config_path = path or config_path_for_repo(repo_root)
    if not config_path.exists():
        if required or path is not None:
            raise ConfigError(
                f"Missing workflow config at {config_path}. Run `linkgate init --repo-root {repo_root}` first.",
                CONFIG_MISSING,
            )
        return default_config()

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"workflow.yaml parse error: {exc}", CONFIG_PARSE_ERROR) from exc
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("workflow.yaml parse error: expected mapping at top level", CONFIG_PARSE_ERROR)

    ok, errors = validate_data(raw, "workflow_config", strict=False)
    if not ok:
        raise ConfigError(
            f"Invalid workflow config at {config_path}:\n" + "\n".join(f"  - {e}" for e in errors),
            CONFIG_INVALID,
        )

    merged = _merge_defaults(WORKFLOW_CONFIG_TEMPLATE, raw)
    config = config_from_dict(merged)
    return WorkflowConfig(
        workflow=config.workflow,
        triggers=config.triggers,
        concurrency=config.concurrency,
        server=config.server,
        readiness=config.readiness,
        verifier=config.verifier,
        path=config_path,
    )


def config_from_dict(data: dict[str, Any]) -> WorkflowConfig:
    """Normalize an already-merged config mapping into frozen dataclasses."""
    triggers_raw = data["triggers"]
    push_raw = triggers_raw.get("push")
    pr_raw = triggers_raw.get("pull_request")

    triggers = TriggerRules(
        push_branches=None if push_raw is None else tuple(_normalize_patterns(push_raw.get("branches"))),
        pull_request_paths=None if pr_raw is None else tuple(_normalize_patterns(pr_raw.get("paths"))),
        merge_group=bool(triggers_raw.get("merge_group", False)),
    )

    concurrency_raw = data["concurrency"]
    concurrency = ConcurrencyPolicy(
        group=str(concurrency_raw["group"]),
        cancel_in_progress=bool(concurrency_raw["cancel_in_progress"]),
    )
    try:
        concurrency_key(concurrency.group, workflow=str(data["workflow"]), ref="refs/heads/main")
    except ValueError as exc:
        raise ConfigError(str(exc), CONFIG_INVALID) from exc

    server_raw = data["server"]
    server = ServiceSpec(
        image=str(server_raw["image"]),
        container_name=str(server_raw["container_name"]),
        source_dir=str(server_raw["source_dir"]),
        mount_path=str(server_raw["mount_path"]),
        host_port=int(server_raw["host_port"]),
        container_port=int(server_raw["container_port"]),
        command=tuple(str(item) for item in server_raw["command"]),
        bind_host=str(server_raw["bind_host"]),
    )

    readiness_raw = data["readiness"]
    readiness = ReadinessPolicy(
        mode=str(readiness_raw["mode"]),
        delay_seconds=float(readiness_raw["delay_seconds"]),
        timeout_seconds=float(readiness_raw["timeout_seconds"]),
        initial_interval_seconds=float(readiness_raw["initial_interval_seconds"]),
        max_interval_seconds=float(readiness_raw["max_interval_seconds"]),
    )
    if readiness.initial_interval_seconds > readiness.max_interval_seconds:
        raise ConfigError(
            "readiness.initial_interval_seconds must be <= readiness.max_interval_seconds",
            CONFIG_INVALID,
        )

    verifier_raw = data["verifier"]
    verifier = VerifierSpec(
        name=str(verifier_raw["name"]),
        version=str(verifier_raw["version"]),
        platform=str(verifier_raw["platform"]),
        url=str(verifier_raw["url"]),
        member=str(verifier_raw["member"]),
        strip_components=int(verifier_raw["strip_components"]),
        install_dir=str(verifier_raw["install_dir"]),
        args=tuple(str(item) for item in verifier_raw["args"]),
    )
    if verifier.strip_components >= len(Path(verifier.member).parts):
        raise ConfigError(
            f"verifier.strip_components={verifier.strip_components} leaves nothing of member `{verifier.member}`",
            CONFIG_INVALID,
        )

    return WorkflowConfig(
        workflow=str(data["workflow"]),
        triggers=triggers,
        concurrency=concurrency,
        server=server,
        readiness=readiness,
        verifier=verifier,
    )


def _merge_defaults(defaults: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Overlay user config on defaults one section deep.

    Trigger entries set to null switch that trigger off instead of falling back.
    """
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if key == "triggers":
            merged["triggers"] = {"push": None, "pull_request": None, "merge_group": False}
            merged["triggers"].update(value)
        elif isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key].update(value)
        else:
            merged[key] = value
    return merged


def _normalize_patterns(value: Any) -> list[str]:
    """Strip and de-duplicate patterns while preserving declaration order."""
    if value is None:
        return []
    normalized: list[str] = []
    seen: set[str] = set()
    for item in value:
        cleaned = str(item).strip()
        if cleaned and cleaned not in seen:
            seen.add(cleaned)
            normalized.append(cleaned)
    return normalized
