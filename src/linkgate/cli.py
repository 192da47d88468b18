"""linkgate CLI - trigger-gated documentation link checking."""

import logging
import os
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer

from linkgate import __version__
from linkgate.concurrency import CancellationToken
from linkgate.config import ensure_default_config, load_config
from linkgate.errors import EVENT_INVALID, EVENT_UNSUPPORTED, LinkgateError, TriggerError
from linkgate.job import event_key, run_job
from linkgate.report import TIMESTAMP_MODES, write_job_report
from linkgate.triggers import branch_from_ref, load_event_file, should_run
from linkgate.types import (
    DEFAULT_REPORT_RELATIVE_PATH,
    EXIT_CANCELLED,
    EXIT_JOB_FAILED,
    EXIT_SKIPPED,
    EXIT_SUCCESS,
    EXIT_TOOLING_ERROR,
    JobState,
    MergeGroupEvent,
    PullRequestEvent,
    PushEvent,
    TriggerEvent,
)
from linkgate.ui import NeonSpinner, configure_logging, console, render_result
from linkgate.verifier import fetch_verifier

logger = logging.getLogger(__name__)

CANCEL_SIGNALS = (signal.SIGINT, signal.SIGTERM)

cli = typer.Typer(
    name="linkgate",
    help="linkgate - serve the docs in a container and fail on broken links",
    no_args_is_help=True,
)


def _version_option_callback(value: bool) -> None:
    """Handle eager --version option."""
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@cli.callback()
def _cli_callback(
    version: bool = typer.Option(
        False,
        "--version",
        help="Show linkgate version and exit.",
        is_eager=True,
        callback=_version_option_callback,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log each step."),
) -> None:
    """Trigger-gated link checking for containerized documentation servers."""
    configure_logging(verbose)


# Shared options

EVENT_OPTION = typer.Option(
    "",
    "--event",
    envvar="GITHUB_EVENT_NAME",
    help="Event name: push, pull_request, or merge_group (default $GITHUB_EVENT_NAME)",
)
EVENT_PATH_OPTION = typer.Option(
    None,
    "--event-path",
    help="GitHub event payload JSON (default $GITHUB_EVENT_PATH)",
)
REF_OPTION = typer.Option(
    None,
    "--ref",
    help="Git ref for the event when no payload file is given (e.g. refs/heads/unstable)",
)
CHANGED_PATH_OPTION = typer.Option(
    None,
    "--changed-path",
    help="Changed file path for pull_request events (repeatable)",
)
CHANGED_PATHS_FILE_OPTION = typer.Option(
    None,
    "--changed-paths-file",
    help="File listing changed paths, one per line",
)
REPO_ROOT_OPTION = typer.Option(
    Path("."),
    "--repo-root",
    help="Repository checkout root",
)
CONFIG_OPTION = typer.Option(
    None,
    "--config",
    help="Workflow config path (default .linkgate/workflow.yaml or $LINKGATE_CONFIG)",
)


def _collect_changed_paths(changed_path: list[str] | None, changed_paths_file: Path | None) -> list[str]:
    paths = list(changed_path or [])
    if changed_paths_file is not None:
        try:
            text = changed_paths_file.read_text(encoding="utf-8")
        except OSError as exc:
            raise TriggerError(f"unable to read changed paths file {changed_paths_file}: {exc}", EVENT_INVALID) from exc
        paths.extend(line.strip() for line in text.splitlines() if line.strip())
    return paths


def _resolve_event(
    event_name: str,
    event_path: Path | None,
    ref: str | None,
    changed_paths: list[str],
) -> TriggerEvent:
    """Build the trigger event from a payload file or from ``--ref``."""
    if event_path is None:
        env_path = os.getenv("GITHUB_EVENT_PATH", "").strip()
        if env_path and not ref:
            event_path = Path(env_path)

    if event_path is not None:
        return load_event_file(event_path, event_name, changed_paths)

    if not ref:
        raise TriggerError("no event payload: pass --event-path or --ref", EVENT_INVALID)

    name = event_name.strip().lower()
    if name == "push":
        return PushEvent(branch=branch_from_ref(ref), ref=ref)
    if name == "pull_request":
        return PullRequestEvent(changed_paths=tuple(sorted(set(changed_paths))), ref=ref)
    if name == "merge_group":
        return MergeGroupEvent(ref=ref)
    raise TriggerError(f"unsupported event `{event_name}`", EVENT_UNSUPPORTED)


@contextmanager
def _cancel_on_signals(token: CancellationToken) -> Iterator[None]:
    """Turn SIGINT/SIGTERM into cooperative cancellation while a job runs.

    The job stops at its next step boundary and still writes its report.
    A second signal aborts immediately.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum: int, frame: object) -> None:
        if token.cancelled:
            raise KeyboardInterrupt
        logger.warning("received %s; cancelling run for %s", signal.Signals(signum).name, token.key)
        token.cancel()

    previous = {signum: signal.getsignal(signum) for signum in CANCEL_SIGNALS}
    for signum in CANCEL_SIGNALS:
        signal.signal(signum, _handler)
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, signal.SIG_DFL if handler is None else handler)


@cli.command(name="init")
def init_cmd(
    repo_root: Path = REPO_ROOT_OPTION,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config"),
) -> None:
    """Write the default workflow config."""
    try:
        path = ensure_default_config(repo_root, force=force)
    except FileExistsError as exc:
        typer.echo(f"❌ {exc} (use --force to overwrite)", err=True)
        raise typer.Exit(code=EXIT_TOOLING_ERROR) from exc
    typer.echo(f"✅ Wrote {path}")


@cli.command(name="should-run")
def should_run_cmd(
    event: str = EVENT_OPTION,
    event_path: Path | None = EVENT_PATH_OPTION,
    ref: str | None = REF_OPTION,
    changed_path: list[str] | None = CHANGED_PATH_OPTION,
    changed_paths_file: Path | None = CHANGED_PATHS_FILE_OPTION,
    repo_root: Path = REPO_ROOT_OPTION,
    config_path: Path | None = CONFIG_OPTION,
) -> None:
    """Evaluate the trigger gate only.

    Exit codes:
      0 - job would run
      3 - job would be skipped
      1 - tooling error
    """
    try:
        config = load_config(repo_root, path=config_path)
        trigger_event = _resolve_event(
            event, event_path, ref, _collect_changed_paths(changed_path, changed_paths_file)
        )
        decision = should_run(trigger_event, config.triggers)
    except LinkgateError as exc:
        typer.echo(f"❌ {exc.reason_code}: {exc}", err=True)
        raise typer.Exit(code=EXIT_TOOLING_ERROR) from exc

    typer.echo("run" if decision else "skip")
    raise typer.Exit(code=EXIT_SUCCESS if decision else EXIT_SKIPPED)


@cli.command(name="fetch-verifier")
def fetch_verifier_cmd(
    repo_root: Path = REPO_ROOT_OPTION,
    config_path: Path | None = CONFIG_OPTION,
    force: bool = typer.Option(False, "--force", help="Re-download even if cached"),
) -> None:
    """Download and unpack the pinned verifier binary."""
    try:
        config = load_config(repo_root, path=config_path)
        binary = NeonSpinner(f"Fetching {config.verifier.name} {config.verifier.version}").run(
            lambda: fetch_verifier(config.verifier, repo_root=repo_root.resolve(), force=force)
        )
    except LinkgateError as exc:
        typer.echo(f"❌ {exc.reason_code}: {exc}", err=True)
        raise typer.Exit(code=EXIT_TOOLING_ERROR) from exc
    typer.echo(str(binary))


@cli.command(name="run")
def run_cmd(
    event: str = EVENT_OPTION,
    event_path: Path | None = EVENT_PATH_OPTION,
    ref: str | None = REF_OPTION,
    changed_path: list[str] | None = CHANGED_PATH_OPTION,
    changed_paths_file: Path | None = CHANGED_PATHS_FILE_OPTION,
    repo_root: Path = REPO_ROOT_OPTION,
    config_path: Path | None = CONFIG_OPTION,
    out: Path | None = typer.Option(
        None,
        "--out",
        "-o",
        help="Report directory (default <repo-root>/out/linkgate)",
    ),
    timestamp_mode: str = typer.Option(
        "deterministic",
        "--timestamp-mode",
        help="Timestamp mode: deterministic or wallclock",
    ),
) -> None:
    """Run the link-check job for one event.

    Exit codes:
      0 - no broken links, or event skipped by the trigger gate
      2 - job failed (broken links, server or verifier failure)
      1 - tooling error
      130 - run was cancelled
    """
    if timestamp_mode not in TIMESTAMP_MODES:
        typer.echo(f"❌ Invalid --timestamp-mode {timestamp_mode}; expected one of {TIMESTAMP_MODES}", err=True)
        raise typer.Exit(code=EXIT_TOOLING_ERROR)

    workspace = repo_root.resolve()
    try:
        config = load_config(workspace, path=config_path)
        trigger_event = _resolve_event(
            event, event_path, ref, _collect_changed_paths(changed_path, changed_paths_file)
        )
    except LinkgateError as exc:
        typer.echo(f"❌ {exc.reason_code}: {exc}", err=True)
        raise typer.Exit(code=EXIT_TOOLING_ERROR) from exc

    token = CancellationToken(key=event_key(trigger_event, config))
    with _cancel_on_signals(token):
        result = NeonSpinner("Checking links").run(
            lambda: run_job(trigger_event, config, workspace=workspace, token=token)
        )

    report_dir = out or (workspace / DEFAULT_REPORT_RELATIVE_PATH)
    written = write_job_report(result, report_dir, timestamp_mode)

    render_result(result)
    if result.service_logs:
        console.rule("server logs")
        console.print(result.service_logs.rstrip(), markup=False, highlight=False)
    if result.verifier_output:
        console.rule(config.verifier.name)
        console.print(result.verifier_output.rstrip(), markup=False, highlight=False)

    typer.echo("\nReports written to:")
    typer.echo(f"  {written['json']}")
    typer.echo(f"  {written['markdown']}")

    exit_code = {
        JobState.SUCCESS: EXIT_SUCCESS,
        JobState.SKIPPED: EXIT_SUCCESS,
        JobState.CANCELLED: EXIT_CANCELLED,
    }.get(result.state, EXIT_JOB_FAILED)
    raise typer.Exit(code=exit_code)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
