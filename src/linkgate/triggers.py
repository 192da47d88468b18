"""Trigger gate: decide whether a repository event starts the job.

``should_run`` is a pure predicate. The remaining helpers turn a GitHub
Actions event (name plus payload JSON) into a ``TriggerEvent``.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from fnmatch import fnmatchcase
from typing import TYPE_CHECKING, Any

from linkgate.errors import EVENT_INVALID, EVENT_UNSUPPORTED, TriggerError
from linkgate.types import MergeGroupEvent, PullRequestEvent, PushEvent, TriggerEvent, TriggerRules

if TYPE_CHECKING:
    from pathlib import Path

SUPPORTED_EVENTS: tuple[str, ...] = ("push", "pull_request", "merge_group")

_BRANCH_REF_PREFIX = "refs/heads/"


def should_run(event: TriggerEvent, rules: TriggerRules) -> bool:
    """Return True when ``event`` qualifies under ``rules``.

    An empty branch or path list accepts everything for that trigger; a
    trigger set to ``None`` is not configured and never fires.
    """
    if isinstance(event, PushEvent):
        if rules.push_branches is None:
            return False
        if not rules.push_branches:
            return True
        return any(fnmatchcase(event.branch, pattern) for pattern in rules.push_branches)

    if isinstance(event, PullRequestEvent):
        if rules.pull_request_paths is None:
            return False
        if not rules.pull_request_paths:
            return True
        return any(
            path_matches(path, pattern)
            for path in event.changed_paths
            for pattern in rules.pull_request_paths
        )

    if isinstance(event, MergeGroupEvent):
        return rules.merge_group

    raise TriggerError(f"unsupported event type: {type(event).__name__}", EVENT_UNSUPPORTED)


def path_matches(path: str, pattern: str) -> bool:
    """Match a repository-relative path against a workflow path filter.

    ``dir/**`` covers everything below ``dir/`` at any depth. Other patterns
    use ``fnmatch`` rules, where ``*`` also crosses directory separators.
    """
    normalized = path.strip().removeprefix("./")
    if pattern.endswith("/**"):
        prefix = pattern[: -len("**")]
        head = prefix.rstrip("/")
        if any(ch in head for ch in "*?["):
            return fnmatchcase(normalized, pattern[: -len("/**")] + "/*")
        return normalized.startswith(prefix)
    return fnmatchcase(normalized, pattern)


def branch_from_ref(ref: str) -> str:
    """Strip ``refs/heads/`` from a git ref."""
    if ref.startswith(_BRANCH_REF_PREFIX):
        return ref[len(_BRANCH_REF_PREFIX):]
    return ref


def event_from_github(
    event_name: str,
    payload: dict[str, Any],
    changed_paths: Iterable[str] | None = None,
) -> TriggerEvent:
    """Build a ``TriggerEvent`` from a GitHub Actions event payload.

    Pull request payloads do not list changed files, so callers pass them in.

    Raises:
        TriggerError: If the event name is unsupported or the payload lacks required fields
    """
    name = event_name.strip().lower()
    if name not in SUPPORTED_EVENTS:
        raise TriggerError(
            f"unsupported event `{event_name}`; expected one of {SUPPORTED_EVENTS}",
            EVENT_UNSUPPORTED,
        )

    if name == "push":
        ref = payload.get("ref")
        if not isinstance(ref, str) or not ref:
            raise TriggerError("push payload missing `ref`", EVENT_INVALID)
        return PushEvent(branch=branch_from_ref(ref), ref=ref)

    if name == "pull_request":
        number = payload.get("number")
        if number is None:
            number = (payload.get("pull_request") or {}).get("number")
        if number is None:
            raise TriggerError("pull_request payload missing `number`", EVENT_INVALID)
        paths = tuple(sorted({p.strip() for p in (changed_paths or []) if p.strip()}))
        return PullRequestEvent(changed_paths=paths, ref=f"refs/pull/{number}/merge")

    merge_group = payload.get("merge_group")
    if not isinstance(merge_group, dict) or not merge_group.get("head_ref"):
        raise TriggerError("merge_group payload missing `merge_group.head_ref`", EVENT_INVALID)
    return MergeGroupEvent(ref=str(merge_group["head_ref"]))


def load_event_file(
    path: Path,
    event_name: str,
    changed_paths: Iterable[str] | None = None,
) -> TriggerEvent:
    """Read a GitHub event payload file and build a ``TriggerEvent``."""
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise TriggerError(f"unable to read event payload {path}: {exc}", EVENT_INVALID) from exc
    except json.JSONDecodeError as exc:
        raise TriggerError(f"invalid JSON in event payload {path}: {exc}", EVENT_INVALID) from exc
    if not isinstance(payload, dict):
        raise TriggerError(f"event payload {path} is not a JSON object", EVENT_INVALID)
    return event_from_github(event_name, payload, changed_paths)
