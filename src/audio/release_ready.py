"""
Release-Ready gate.

Brings an export under a true-peak ceiling using plain gain reduction,
verifying every step by re-measurement:

1. Render the source at the current cumulative gain straight into the
   requested bit depth and sample rate, so dither and resampling are part
   of the measured signal.
2. Measure the candidate once.
3. If its true peak is within the ceiling (plus a small comparison
   tolerance) the candidate becomes the output.
4. Otherwise reduce the gain by (peak - ceiling) plus a safety margin,
   clamped at -18 dB, and try again.

The loop is bounded. Running out of attempts is a result, not an error:
the candidate with the lowest measured peak is delivered with
``passes=False``.
"""

import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from src.exceptions import ConfigurationError
from .analyzer import LoudnessMetrics, measure_ebur128
from .render import BitDepth, gain_filter, parse_bit_depth, render_wav, validate_sample_rate

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 8
DEFAULT_TRUE_PEAK_CEILING_DB = -2.0
CEILING_EPSILON = 0.05
SAFETY_MARGIN_DB = 0.2
MAX_GAIN_REDUCTION_DB = -18.0
MIN_CEILING_DB = -20.0
MAX_CEILING_DB = 0.0

MeasureFn = Callable[[Path], LoudnessMetrics]
RenderFn = Callable[..., None]


@dataclass
class GateAttempt:
    """One render-and-measure pass of the gate"""
    index: int
    gain_applied_db: float
    metrics: LoudnessMetrics
    passed_ceiling: bool

    @property
    def resulting_peak_dbfs(self) -> float:
        return self.metrics.true_peak_dbfs

    def to_dict(self) -> Dict[str, float]:
        return {
            "index": self.index,
            "gainAppliedDb": self.gain_applied_db,
            "resultingPeakDbfs": self.resulting_peak_dbfs,
        }


@dataclass
class ReleaseReadyResult:
    passes: bool
    final_gain_db: float
    final_metrics: LoudnessMetrics
    output_path: Path
    attempts: List[GateAttempt] = field(default_factory=list)

    @property
    def attempts_used(self) -> int:
        return len(self.attempts)


def passes_ceiling(true_peak_dbfs: float, ceiling_db: float) -> bool:
    return true_peak_dbfs <= ceiling_db + CEILING_EPSILON


def validate_ceiling(ceiling_db: float) -> float:
    if not (MIN_CEILING_DB <= ceiling_db <= MAX_CEILING_DB):
        raise ConfigurationError(
            f"True-peak ceiling {ceiling_db} dB outside [{MIN_CEILING_DB}, {MAX_CEILING_DB}]",
            details={"true_peak_ceiling_db": ceiling_db},
        )
    return ceiling_db


def next_gain_db(current_gain_db: float, true_peak_dbfs: float, ceiling_db: float) -> float:
    """Cumulative gain for the next attempt after a failed measurement"""
    reduction = (true_peak_dbfs - ceiling_db) + SAFETY_MARGIN_DB
    return max(current_gain_db - reduction, MAX_GAIN_REDUCTION_DB)


def make_release_ready(
    input_path: Path,
    output_path: Path,
    bit_depth: Union[str, BitDepth],
    sample_rate: int,
    true_peak_ceiling_db: float = DEFAULT_TRUE_PEAK_CEILING_DB,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    work_dir: Optional[Path] = None,
    measure: MeasureFn = measure_ebur128,
    render: RenderFn = render_wav,
    job_id: Optional[str] = None,
) -> ReleaseReadyResult:
    """
    Run the gate and write the delivered WAV to ``output_path``.

    Args:
        input_path: Decodable source audio
        output_path: Where the delivered WAV is written
        bit_depth: "16", "24" or "32f"
        sample_rate: 44100 or 48000
        true_peak_ceiling_db: Ceiling in dBTP, within [-20, 0]
        max_attempts: Upper bound on render-and-measure passes
        work_dir: Directory for candidate files (a private temp dir if None)
        measure: Loudness measurement function
        render: WAV render function with render_wav's signature
        job_id: Used only for log context

    Returns:
        ReleaseReadyResult describing every attempt and the delivered file

    Raises:
        ConfigurationError: Invalid bit depth, sample rate, ceiling or bound,
            raised before any rendering
        AudioProcessingError: If rendering or measurement fails
    """
    depth = parse_bit_depth(bit_depth)
    validate_sample_rate(sample_rate)
    ceiling = validate_ceiling(true_peak_ceiling_db)
    if max_attempts < 1:
        raise ConfigurationError(f"max_attempts must be at least 1, got {max_attempts}")

    log_prefix = f"[{job_id}] " if job_id else ""
    output_path = Path(output_path)

    with tempfile.TemporaryDirectory(prefix="release-ready-", dir=work_dir) as tmp:
        candidates_dir = Path(tmp)
        attempts: List[GateAttempt] = []
        candidates: Dict[int, Path] = {}
        gain_db = 0.0

        for index in range(1, max_attempts + 1):
            candidate = candidates_dir / f"candidate_{index}.wav"
            render(
                input_path,
                candidate,
                depth,
                sample_rate,
                filter_graph=gain_filter(gain_db),
            )
            metrics = measure(candidate)
            passed = passes_ceiling(metrics.true_peak_dbfs, ceiling)

            attempt = GateAttempt(
                index=index,
                gain_applied_db=gain_db,
                metrics=metrics,
                passed_ceiling=passed,
            )
            attempts.append(attempt)
            candidates[index] = candidate

            logger.info(
                f"{log_prefix}Gate attempt {index}/{max_attempts}: gain={gain_db:.2f} dB, "
                f"true peak={metrics.true_peak_dbfs:.2f} dBTP, ceiling={ceiling:.2f} dBTP, "
                f"passed={passed}"
            )

            if passed:
                shutil.move(str(candidate), str(output_path))
                return ReleaseReadyResult(
                    passes=True,
                    final_gain_db=gain_db,
                    final_metrics=metrics,
                    output_path=output_path,
                    attempts=attempts,
                )

            new_gain = next_gain_db(gain_db, metrics.true_peak_dbfs, ceiling)
            if new_gain >= gain_db:
                logger.warning(
                    f"{log_prefix}Gain reduction clamped at {MAX_GAIN_REDUCTION_DB} dB; "
                    f"stopping after {index} attempts"
                )
                break
            gain_db = new_gain

        best = min(attempts, key=lambda a: a.metrics.true_peak_dbfs)
        logger.warning(
            f"{log_prefix}Gate did not reach {ceiling:.2f} dBTP in {len(attempts)} attempts; "
            f"delivering attempt {best.index} at {best.metrics.true_peak_dbfs:.2f} dBTP"
        )
        shutil.move(str(candidates[best.index]), str(output_path))
        return ReleaseReadyResult(
            passes=False,
            final_gain_db=best.gain_applied_db,
            final_metrics=best.metrics,
            output_path=output_path,
            attempts=attempts,
        )


@dataclass
class ReleaseReadyCheck:
    passes: bool
    metrics: LoudnessMetrics
    headroom_db: float


def check_release_ready(
    input_path: Path,
    true_peak_ceiling_db: float = DEFAULT_TRUE_PEAK_CEILING_DB,
    measure: MeasureFn = measure_ebur128,
) -> ReleaseReadyCheck:
    """Check whether a file already meets the true-peak ceiling"""
    metrics = measure(input_path)
    return ReleaseReadyCheck(
        passes=passes_ceiling(metrics.true_peak_dbfs, true_peak_ceiling_db),
        metrics=metrics,
        headroom_db=true_peak_ceiling_db - metrics.true_peak_dbfs,
    )
