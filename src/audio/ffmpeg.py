"""
FFmpeg command execution wrapper.

Runs external audio tools with captured output and a hard wall-clock
timeout. A tool that overruns its limit is killed and reported as a
ToolTimeoutError so the caller can treat it as a stage failure.
"""

import logging
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from src.exceptions import AudioProcessingError, ToolTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 600


@dataclass
class ToolResult:
    """Captured outcome of one external tool invocation."""
    returncode: int
    stdout: str
    stderr: str


def _resolve_binary(name: str) -> str:
    from src.config import config
    if name == "ffmpeg":
        return config.ffmpeg_binary
    if name == "ffprobe":
        return config.ffprobe_binary
    return name


def run(cmd: str, args: List[str], timeout: Optional[float] = None) -> ToolResult:
    """
    Execute a tool and capture its output.

    Args:
        cmd: Tool name ("ffmpeg", "ffprobe"); mapped to the configured binary
        args: Command-line arguments
        timeout: Wall-clock limit in seconds (default: 600)

    Returns:
        ToolResult with exit code and decoded output

    Raises:
        ToolTimeoutError: If the tool does not finish in time
        AudioProcessingError: If the tool cannot be started
    """
    timeout = timeout or DEFAULT_TIMEOUT_SECONDS
    full_cmd = [_resolve_binary(cmd), *args]

    logger.debug(f"Running command: {' '.join(full_cmd)}")
    try:
        # subprocess.run kills the child before raising TimeoutExpired
        proc = subprocess.run(
            full_cmd,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise ToolTimeoutError(
            f"Command timed out after {timeout}s: {cmd} {' '.join(args)}",
            details={"timeout_seconds": timeout},
        ) from e
    except OSError as e:
        raise AudioProcessingError(f"Failed to start {cmd}: {e}") from e

    return ToolResult(returncode=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)


def require_ok(result: ToolResult, context: str) -> None:
    """Raise AudioProcessingError if the tool did not exit with code 0."""
    if result.returncode != 0:
        logger.error(f"{context} failed (code={result.returncode}): {result.stderr[-2000:]}")
        raise AudioProcessingError(
            f"{context} failed (code={result.returncode}).\n"
            f"STDERR:\n{result.stderr[:2000]}\n"
            f"STDOUT:\n{result.stdout[:2000]}",
            details={"returncode": result.returncode},
        )


def check_ffmpeg() -> bool:
    """Check if FFmpeg is available on the system"""
    try:
        return run("ffmpeg", ["-version"], timeout=5).returncode == 0
    except AudioProcessingError:
        return False


def check_ffprobe() -> bool:
    """Check if FFprobe is available on the system"""
    try:
        return run("ffprobe", ["-version"], timeout=5).returncode == 0
    except AudioProcessingError:
        return False
