"""
EBU R128 loudness measurement using FFmpeg.

Measures integrated loudness (LUFS), loudness range (LRA), and true peak
(dBTP) with the ebur128 filter and parses its text report.

The report interleaves per-frame lines with a trailing Summary block:

    t: 0.299975  TARGET:-23 LUFS  M: -16.2 S: -18.3  I: -18.2 LUFS  LRA: 0.0 LU ...
    [Parsed_ebur128_0 @ 0x5555555c8a40] Summary:

      Integrated loudness:
        I:         -12.6 LUFS
        Threshold: -23.0 LUFS

      Loudness range:
        LRA:         6.2 LU
        ...

      True peak:
        Peak:        -0.3 dBFS

Frame lines also carry "I:" and "LRA:" tokens, so every Summary value is
read from inside its own subsection only.
"""

import logging
import re
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Dict, List, Optional

from src.exceptions import MetricsParseError
from .ffmpeg import run, require_ok

logger = logging.getLogger(__name__)

_NUMBER = r"([-+]?(?:\d+(?:\.\d+)?|inf))"

# Summary field -> subsection header it must appear under
SUMMARY_FIELDS = {
    "I": "Integrated loudness",
    "LRA": "Loudness range",
    "Peak": "True peak",
}

_FRAME_MOMENTARY = re.compile(r"\bM:\s*(-?\d+(?:\.\d+)?)")
_FRAME_SHORT_TERM = re.compile(r"\bS:\s*(-?\d+(?:\.\d+)?)")


@dataclass(frozen=True)
class LoudnessMetrics:
    """Result of one measurement pass. Values are unrounded."""
    integrated_lufs: float
    lra: float
    true_peak_dbfs: float
    short_term_max: float
    momentary_max: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "integratedLufs": self.integrated_lufs,
            "truePeakDbfs": self.true_peak_dbfs,
            "lra": self.lra,
            "shortTermMax": self.short_term_max,
            "momentaryMax": self.momentary_max,
        }


def _summary_block(text: str) -> Optional[str]:
    idx = text.rfind("Summary:")
    if idx == -1:
        return None
    return text[idx + len("Summary:"):]


def _subsection(summary: str, header: str) -> Optional[str]:
    """Return the text between ``header:`` and the next known header."""
    match = re.search(rf"^\s*{re.escape(header)}:\s*$", summary, re.MULTILINE)
    if not match:
        return None
    rest = summary[match.end():]
    end = len(rest)
    for other in SUMMARY_FIELDS.values():
        if other == header:
            continue
        nxt = re.search(rf"^\s*{re.escape(other)}:\s*$", rest, re.MULTILINE)
        if nxt and nxt.start() < end:
            end = nxt.start()
    return rest[:end]


def parse_summary_field(text: str, field: str) -> float:
    """
    Parse one Summary field ("I", "LRA" or "Peak") from ebur128 output.

    Raises:
        MetricsParseError: If the field is absent from its Summary subsection
    """
    header = SUMMARY_FIELDS[field]
    summary = _summary_block(text)
    section = _subsection(summary, header) if summary is not None else None
    if section is not None:
        match = re.search(rf"^\s*{re.escape(field)}:\s*{_NUMBER}", section, re.MULTILINE)
        if match:
            return float(match.group(1))

    raise MetricsParseError(
        field,
        f"Failed to parse {field}: from ebur128 Summary. Output sample:\n{text[-1000:]}",
    )


def _frame_maximum(pattern: re.Pattern, frames: str) -> Optional[float]:
    values: List[float] = [float(v) for v in pattern.findall(frames)]
    return max(values) if values else None


def parse_ebur128_summary(text: str) -> LoudnessMetrics:
    """
    Parse a complete ebur128 report into LoudnessMetrics.

    Short-term and momentary maxima come from the per-frame lines and fall
    back to the integrated loudness when the report has no frame log.
    """
    integrated = parse_summary_field(text, "I")
    lra = parse_summary_field(text, "LRA")
    true_peak = parse_summary_field(text, "Peak")

    idx = text.rfind("Summary:")
    frames = text[:idx] if idx != -1 else text
    short_term = _frame_maximum(_FRAME_SHORT_TERM, frames)
    momentary = _frame_maximum(_FRAME_MOMENTARY, frames)

    return LoudnessMetrics(
        integrated_lufs=integrated,
        lra=lra,
        true_peak_dbfs=true_peak,
        short_term_max=short_term if short_term is not None else integrated,
        momentary_max=momentary if momentary is not None else integrated,
    )


def measure_ebur128(input_path: Path, timeout: Optional[float] = None) -> LoudnessMetrics:
    """
    Measure an audio file's loudness with FFmpeg's ebur128 filter.

    Args:
        input_path: Decoded audio file to measure
        timeout: Wall-clock limit for the ffmpeg pass

    Returns:
        LoudnessMetrics for the whole file

    Raises:
        AudioProcessingError: If ffmpeg fails or times out
        MetricsParseError: If ffmpeg succeeded but the Summary is incomplete
    """
    if timeout is None:
        from src.config import config
        timeout = config.measure_timeout_seconds

    result = run(
        "ffmpeg",
        [
            "-hide_banner",
            "-nostats",
            "-i", str(input_path),
            "-af", "ebur128=peak=true",
            "-f", "null",
            "-",
        ],
        timeout=timeout,
    )
    require_ok(result, "ffmpeg ebur128 measurement")

    # FFmpeg writes the ebur128 report to stderr
    metrics = parse_ebur128_summary(result.stderr)
    logger.debug(f"Measured {input_path}: {asdict(metrics)}")
    return metrics


def measure_true_peak(input_path: Path, timeout: Optional[float] = None) -> float:
    """Quick true-peak-only measurement (no frame log)."""
    if timeout is None:
        from src.config import config
        timeout = config.measure_timeout_seconds

    result = run(
        "ffmpeg",
        [
            "-hide_banner",
            "-nostats",
            "-i", str(input_path),
            "-af", "ebur128=peak=true:framelog=quiet",
            "-f", "null",
            "-",
        ],
        timeout=timeout,
    )
    require_ok(result, "ffmpeg true peak measurement")
    return parse_summary_field(result.stderr, "Peak")
