"""
Audio measurement, rendering and the Release-Ready gate.
"""

from .analyzer import (
    LoudnessMetrics,
    measure_ebur128,
    measure_true_peak,
    parse_ebur128_summary,
)
from .ffmpeg import check_ffmpeg, check_ffprobe
from .release_ready import (
    GateAttempt,
    ReleaseReadyCheck,
    ReleaseReadyResult,
    check_release_ready,
    make_release_ready,
)
from .render import (
    BitDepth,
    apply_gain,
    bits_per_sample,
    parse_bit_depth,
    render_aac,
    render_codec_preview,
    render_mp3,
    render_wav,
    wav_codec,
)

__all__ = [
    "LoudnessMetrics",
    "measure_ebur128",
    "measure_true_peak",
    "parse_ebur128_summary",
    "check_ffmpeg",
    "check_ffprobe",
    "GateAttempt",
    "ReleaseReadyCheck",
    "ReleaseReadyResult",
    "check_release_ready",
    "make_release_ready",
    "BitDepth",
    "apply_gain",
    "bits_per_sample",
    "parse_bit_depth",
    "render_aac",
    "render_codec_preview",
    "render_mp3",
    "render_wav",
    "wav_codec",
]
