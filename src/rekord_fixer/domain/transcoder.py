"""
Audio transcoding through an external ffmpeg process.

The contract with the process: it either runs to completion, or it is killed
when the caller cancels. In both the failure and the cancel case the partial
output file is removed.
"""

import subprocess
import time
from pathlib import Path
from typing import Callable, List, Optional, Protocol

from loguru import logger

from ..core.errors import TranscodeCancelled, TranscodeError

# One fixed codec per target format
CODECS = {
    "mp3": ["-c:a", "libmp3lame", "-b:a", "320k"],
    "flac": ["-c:a", "flac"],
    "wav": ["-c:a", "pcm_s16le"],
}

POLL_INTERVAL = 0.1


class Transcoder(Protocol):
    def convert(
        self,
        source: Path,
        target: Path,
        target_format: str,
        is_cancelled: Optional[Callable[[], bool]] = None,
    ) -> None:
        ...


def build_command(binary: str, source: Path, target: Path, target_format: str) -> List[str]:
    """ffmpeg argument list for one conversion.

    Raises:
        TranscodeError: If the target format is not supported
    """
    codec = CODECS.get(target_format.lower())
    if codec is None:
        raise TranscodeError(f"Unsupported target format: {target_format}")
    return [
        binary,
        "-y",
        "-i",
        str(source),
        "-map_metadata",
        "0",
        *codec,
        str(target),
        "-loglevel",
        "error",
    ]


def _remove_partial(target: Path) -> None:
    try:
        target.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not remove partial output {target}: {e}")


def _kill(process: subprocess.Popen) -> None:
    """Kill the process, reap it and close its pipes."""
    process.kill()
    process.communicate()


class FfmpegTranscoder:
    """Transcoder backed by the ffmpeg command-line tool.

    Args:
        binary: ffmpeg executable name or path
        timeout: Seconds before a single conversion is considered hung
    """

    def __init__(self, binary: str = "ffmpeg", timeout: Optional[float] = None):
        self.binary = binary
        self.timeout = timeout

    def convert(
        self,
        source: Path,
        target: Path,
        target_format: str,
        is_cancelled: Optional[Callable[[], bool]] = None,
    ) -> None:
        """Convert one file, polling is_cancelled while ffmpeg runs.

        Raises:
            TranscodeCancelled: If cancelled (process killed, output removed)
            TranscodeError: If ffmpeg fails or cannot be started
        """
        cmd = build_command(self.binary, source, target, target_format)
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE
            )
        except OSError as e:
            raise TranscodeError(f"Cannot start {self.binary}: {e}") from e

        started = time.monotonic()
        while True:
            # stderr is drained on every poll; output read so far survives TimeoutExpired
            try:
                _, stderr_bytes = process.communicate(timeout=POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                pass
            if is_cancelled is not None and is_cancelled():
                _kill(process)
                _remove_partial(target)
                raise TranscodeCancelled(f"Conversion of {source.name} cancelled")
            if self.timeout is not None and time.monotonic() - started > self.timeout:
                _kill(process)
                _remove_partial(target)
                raise TranscodeError(f"Timeout converting {source.name}")

        stderr = (stderr_bytes or b"").decode(errors="replace")
        if process.returncode != 0:
            _remove_partial(target)
            raise TranscodeError(
                f"ffmpeg failed on {source.name} (exit {process.returncode}): {stderr[:200]}"
            )
