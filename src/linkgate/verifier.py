"""Pinned link-check verifier: download, unpack, invoke."""

from __future__ import annotations

import io
import logging
import stat
import tarfile
from pathlib import Path, PurePosixPath

import requests

from linkgate.errors import VERIFIER_FETCH_FAILED, VerifierFetchError
from linkgate.exec import CommandRunner, run_command
from linkgate.types import VerifierOutcome, VerifierSpec

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT_SECONDS = 60


def release_url(spec: VerifierSpec) -> str:
    """Expand ``{version}`` and ``{platform}`` in the release URL template."""
    return spec.url.format(version=spec.version, platform=spec.platform)


def install_path(spec: VerifierSpec, *, repo_root: Path) -> Path:
    """Where the extracted binary lives; versioned so pin bumps never reuse a stale binary."""
    stripped = PurePosixPath(spec.member).parts[spec.strip_components:]
    return (repo_root / spec.install_dir / f"{spec.name}-{spec.version}" / Path(*stripped)).resolve()


def fetch_verifier(
    spec: VerifierSpec,
    *,
    repo_root: Path,
    session: requests.Session | None = None,
    force: bool = False,
) -> Path:
    """Download the pinned archive and extract the verifier binary.

    An already-extracted binary is reused unless ``force`` is set.

    Raises:
        VerifierFetchError: On network or HTTP failure, unreadable archive, missing member,
            or when the binary cannot be written to ``install_dir``
    """
    target = install_path(spec, repo_root=repo_root)
    if target.is_file() and not force:
        logger.info("using cached %s at %s", spec.name, target)
        return target

    url = release_url(spec)
    logger.info("downloading %s %s from %s", spec.name, spec.version, url)
    http = session or requests.Session()
    try:
        response = http.get(url, timeout=DOWNLOAD_TIMEOUT_SECONDS, allow_redirects=True)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise VerifierFetchError(f"failed to download {url}: {exc}", VERIFIER_FETCH_FAILED) from exc
    finally:
        if session is None:
            http.close()

    payload = extract_member(response.content, spec.member, archive_name=url)

    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(payload)
        target.chmod(target.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    except OSError as exc:
        raise VerifierFetchError(f"unable to install {spec.name} at {target}: {exc}", VERIFIER_FETCH_FAILED) from exc
    return target


def extract_member(archive: bytes, member: str, *, archive_name: str = "archive") -> bytes:
    """Return the bytes of ``member`` from a (possibly compressed) tarball."""
    try:
        with tarfile.open(fileobj=io.BytesIO(archive), mode="r:*") as tar:
            try:
                info = tar.getmember(member)
            except KeyError as exc:
                raise VerifierFetchError(
                    f"{archive_name} does not contain `{member}`",
                    VERIFIER_FETCH_FAILED,
                ) from exc
            if not info.isfile():
                raise VerifierFetchError(
                    f"`{member}` in {archive_name} is not a regular file",
                    VERIFIER_FETCH_FAILED,
                )
            handle = tar.extractfile(info)
            if handle is None:
                raise VerifierFetchError(f"unable to read `{member}` from {archive_name}", VERIFIER_FETCH_FAILED)
            return handle.read()
    except tarfile.TarError as exc:
        raise VerifierFetchError(f"{archive_name} is not a readable tar archive: {exc}", VERIFIER_FETCH_FAILED) from exc


def build_verifier_argv(binary: Path, target: str, spec: VerifierSpec) -> list[str]:
    return [str(binary), target, *spec.args]


def run_verifier(
    binary: Path,
    target: str,
    spec: VerifierSpec,
    *,
    cwd: Path,
    runner: CommandRunner = run_command,
) -> VerifierOutcome:
    """Run the verifier against ``target``. Its exit code is authoritative; no retries."""
    argv = build_verifier_argv(binary, target, spec)
    logger.info("running %s against %s", spec.name, target)
    result = runner(argv, cwd=cwd, check=False)
    return VerifierOutcome(argv=tuple(argv), exit_code=result.returncode, output=result.output)
