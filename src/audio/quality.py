"""
Lossy-codec quality estimates for codec previews.
"""

import logging
from pathlib import Path

import numpy as np
import soundfile as sf

logger = logging.getLogger(__name__)

CLIPPING_RISK_THRESHOLD_DBTP = -0.5
# SNR at or above this is treated as transparent (score 0)
TRANSPARENT_SNR_DB = 60.0


def read_audio(path: Path) -> np.ndarray:
    """Read an audio file as float64 samples shaped (frames, channels)"""
    data, _ = sf.read(str(path), dtype="float64", always_2d=True)
    return data


def artifact_score(original: np.ndarray, decoded: np.ndarray) -> float:
    """
    Estimate codec damage on a 0-100 scale (lower is better).

    Compares the overlapping frames and channels of both buffers via SNR;
    an SNR of 60 dB or more scores 0, 0 dB or less scores 100.
    """
    if original.ndim == 1:
        original = original[:, np.newaxis]
    if decoded.ndim == 1:
        decoded = decoded[:, np.newaxis]

    frames = min(original.shape[0], decoded.shape[0])
    channels = min(original.shape[1], decoded.shape[1])
    if frames == 0 or channels == 0:
        return 0.0

    orig = original[:frames, :channels]
    dec = decoded[:frames, :channels]
    energy = float(np.sum(orig ** 2))
    error = float(np.sum((orig - dec) ** 2))

    if energy > 0.0 and error > 0.0:
        snr = 10.0 * np.log10(energy / error)
    else:
        snr = 100.0

    score = (TRANSPARENT_SNR_DB - snr) / TRANSPARENT_SNR_DB * 100.0
    return float(np.clip(score, 0.0, 100.0))


def has_clipping_risk(true_peak_dbfs: float) -> bool:
    return true_peak_dbfs > CLIPPING_RISK_THRESHOLD_DBTP
