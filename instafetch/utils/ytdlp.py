"""Helpers for running yt-dlp as an external, killable subprocess.

Two uses: `--dump-single-json` metadata extraction for the structured
extractor strategy, and `-o -` piping for delivery, where yt-dlp negotiates
the headers/redirects the CDN expects so we never fetch signed video URLs
ourselves.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog

from instafetch.config import settings
from instafetch.errors import ErrorKind, ResolutionError

logger = structlog.get_logger()

# Favours MP4/H.264 for the widest player compatibility
DELIVERY_FORMAT = "best[ext=mp4]/bestvideo[ext=mp4]+bestaudio[ext=m4a]/best"

_STDERR_SIGNALS: list[tuple[ErrorKind, tuple[str, ...]]] = [
    (
        ErrorKind.ACCOUNT_CHALLENGED,
        ("challenge_required", "checkpoint_required", "verify your account", "suspicious activity"),
    ),
    (
        ErrorKind.NOT_FOUND,
        (
            "http error 404",
            "404: not found",
            "post not found",
            "isn't available",
            "does not exist",
            "has been removed",
            "this account is private",
        ),
    ),
    (
        ErrorKind.RATE_LIMITED,
        ("http error 429", "too many requests", "rate-limit", "rate limit", "wait a few minutes"),
    ),
    (
        ErrorKind.AUTH_REQUIRED,
        ("login required", "login_required", "log in to", "http error 401"),
    ),
]


def classify_stderr(stderr: str) -> ErrorKind:
    """Map yt-dlp diagnostic output to the closest error kind."""
    text = stderr.lower()
    for kind, phrases in _STDERR_SIGNALS:
        if any(phrase in text for phrase in phrases):
            return kind
    return ErrorKind.DOWNLOAD_FAILED


def _tail(stderr: bytes, limit: int = 300) -> str:
    return stderr.decode(errors="replace").strip()[-limit:]


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    """Kill the process if it is still running and reap it."""
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        pass
    await proc.wait()


async def ytdlp_info(
    url: str,
    extra_args: list[str] | None = None,
    timeout: float | None = None,
) -> dict:
    """Run yt-dlp --dump-single-json to get metadata without downloading.

    The process is killed if the timeout expires or the caller is cancelled.
    """
    cmd = [settings.ytdlp_binary, "--dump-single-json", "--no-warnings", "--no-progress"]
    if extra_args:
        cmd.extend(extra_args)
    cmd.append(url)

    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout)
    except TimeoutError:
        logger.warning("ytdlp_timeout", url=url, timeout_s=timeout)
        # Only the global resolve deadline is reported as TIMEOUT
        raise ResolutionError(
            ErrorKind.DOWNLOAD_FAILED, f"yt-dlp did not finish within {timeout}s"
        ) from None
    finally:
        await _terminate(proc)

    if proc.returncode != 0:
        message = _tail(stderr)
        raise ResolutionError(classify_stderr(message), f"yt-dlp info failed: {message}")

    try:
        info = json.loads(stdout)
    except json.JSONDecodeError as exc:
        raise ResolutionError(
            ErrorKind.UNPARSABLE_RESPONSE, f"yt-dlp returned malformed JSON: {exc}"
        ) from exc
    if not isinstance(info, dict):
        raise ResolutionError(ErrorKind.UNPARSABLE_RESPONSE, "yt-dlp JSON is not an object")
    return info


class YtdlpPipe:
    """A running `yt-dlp -o -` process whose stdout is consumed in chunks."""

    def __init__(self, proc: asyncio.subprocess.Process, stderr_task: asyncio.Task) -> None:
        self._proc = proc
        self._stderr_task = stderr_task

    async def chunks(self, size: int) -> AsyncIterator[bytes]:
        """Yield stdout chunks; raise ResolutionError if yt-dlp exits non-zero."""
        while True:
            chunk = await self._proc.stdout.read(size)
            if not chunk:
                break
            yield chunk

        returncode = await self._proc.wait()
        if returncode != 0:
            message = _tail(await self._stderr_task)
            raise ResolutionError(classify_stderr(message), f"yt-dlp pipe failed: {message}")


@asynccontextmanager
async def ytdlp_pipe(
    url: str,
    extra_args: list[str] | None = None,
    playlist_item: int | None = None,
) -> AsyncIterator[YtdlpPipe]:
    """Spawn yt-dlp writing the selected format to stdout.

    `playlist_item` picks one 1-based entry of a multi-item post; without it
    the URL must name a single item.

    Leaving the context (normally, on error, or on cancellation) kills the
    process, so a disconnected client never leaves yt-dlp running.
    """
    cmd = [
        settings.ytdlp_binary,
        "-o", "-",
        "--no-progress",
        "--no-warnings",
        "-f", DELIVERY_FORMAT,
    ]
    if playlist_item is None:
        cmd.append("--no-playlist")
    else:
        cmd.extend(["--playlist-items", str(playlist_item)])
    if extra_args:
        cmd.extend(extra_args)
    cmd.append(url)

    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    # Drain stderr concurrently so a chatty yt-dlp cannot block on a full pipe
    stderr_task = asyncio.ensure_future(proc.stderr.read())
    try:
        yield YtdlpPipe(proc, stderr_task)
    finally:
        await _terminate(proc)
        if not stderr_task.done():
            stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await stderr_task
