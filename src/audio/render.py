"""
Audio rendering with explicit FFmpeg codec selection.

Output encoding never relies on FFmpeg defaults: codec, bit depth and
sample rate are always passed explicitly.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple, Union

from src.exceptions import AudioProcessingError, ConfigurationError
from .ffmpeg import run, require_ok

logger = logging.getLogger(__name__)

MP3_BITRATE_KBPS = 320
AAC_BITRATE_KBPS = 256
SUPPORTED_SAMPLE_RATES = (44100, 48000)


class BitDepth(str, Enum):
    """Requested WAV bit depth token"""
    PCM_16 = "16"
    PCM_24 = "24"
    FLOAT_32 = "32f"


_WAV_CODECS = {
    BitDepth.PCM_16: "pcm_s16le",
    BitDepth.PCM_24: "pcm_s24le",
    BitDepth.FLOAT_32: "pcm_f32le",
}

_BITS_PER_SAMPLE = {
    BitDepth.PCM_16: 16,
    BitDepth.PCM_24: 24,
    BitDepth.FLOAT_32: 32,
}

# Codec preview format -> (ffmpeg encoder, file extension)
PREVIEW_ENCODERS = {
    "aac": ("aac", "m4a"),
    "mp3": ("libmp3lame", "mp3"),
    "opus": ("libopus", "ogg"),
}


def parse_bit_depth(token: Union[str, BitDepth]) -> BitDepth:
    """
    Convert a bit depth token into a BitDepth.

    Raises:
        ConfigurationError: For anything other than "16", "24" or "32f"
    """
    if isinstance(token, BitDepth):
        return token
    try:
        return BitDepth(str(token))
    except ValueError:
        raise ConfigurationError(
            f"Invalid bit depth: {token!r}",
            details={"bit_depth": token, "allowed": [b.value for b in BitDepth]},
        )


def wav_codec(bit_depth: Union[str, BitDepth]) -> str:
    """Get the explicit WAV PCM codec for a bit depth"""
    return _WAV_CODECS[parse_bit_depth(bit_depth)]


def bits_per_sample(bit_depth: Union[str, BitDepth]) -> int:
    """Get bits per sample for a bit depth"""
    return _BITS_PER_SAMPLE[parse_bit_depth(bit_depth)]


def validate_sample_rate(sample_rate: int) -> int:
    if sample_rate not in SUPPORTED_SAMPLE_RATES:
        raise ConfigurationError(
            f"Unsupported sample rate: {sample_rate}",
            details={"sample_rate": sample_rate, "allowed": list(SUPPORTED_SAMPLE_RATES)},
        )
    return sample_rate


def gain_filter(gain_db: float) -> Optional[str]:
    """Volume filter for a gain change, or None for unity gain"""
    if gain_db == 0:
        return None
    return f"volume={gain_db}dB"


def _render_timeout() -> int:
    from src.config import config
    return config.render_timeout_seconds


def render_wav(
    input_path: Path,
    output_path: Path,
    bit_depth: Union[str, BitDepth],
    sample_rate: int,
    filter_graph: Optional[str] = None,
) -> None:
    """
    Render audio to WAV with explicit bit depth and sample rate.

    Triangular dither is applied only when reducing to 16-bit.

    Args:
        input_path: Source audio (any format ffmpeg can decode)
        output_path: Destination .wav path (overwritten)
        bit_depth: "16", "24" or "32f"
        sample_rate: Output sample rate in Hz
        filter_graph: Optional filter prepended to the chain, e.g. "volume=-3dB"

    Raises:
        ConfigurationError: If bit_depth is not a known token
        AudioProcessingError: If ffmpeg fails
    """
    codec = wav_codec(bit_depth)

    filters: List[str] = []
    if filter_graph:
        filters.append(filter_graph)
    if parse_bit_depth(bit_depth) is BitDepth.PCM_16:
        filters.append("aresample=dither_method=triangular")

    af = ",".join(filters) if filters else "anull"

    result = run(
        "ffmpeg",
        [
            "-hide_banner",
            "-y",
            "-i", str(input_path),
            "-vn",
            "-ar", str(sample_rate),
            "-af", af,
            "-c:a", codec,
            str(output_path),
        ],
        timeout=_render_timeout(),
    )
    require_ok(result, "ffmpeg render_wav")


def render_mp3(
    input_path: Path,
    output_path: Path,
    sample_rate: int,
    bitrate_kbps: int = MP3_BITRATE_KBPS,
) -> None:
    """Render audio to MP3 with explicit encoder and bitrate"""
    result = run(
        "ffmpeg",
        [
            "-hide_banner",
            "-y",
            "-i", str(input_path),
            "-vn",
            "-ar", str(sample_rate),
            "-c:a", "libmp3lame",
            "-b:a", f"{bitrate_kbps}k",
            "-q:a", "0",
            str(output_path),
        ],
        timeout=_render_timeout(),
    )
    require_ok(result, "ffmpeg render_mp3")


def render_aac(
    input_path: Path,
    output_path: Path,
    sample_rate: int,
    bitrate_kbps: int = AAC_BITRATE_KBPS,
) -> None:
    """Render audio to AAC (MP4 container) with explicit encoder and bitrate"""
    result = run(
        "ffmpeg",
        [
            "-hide_banner",
            "-y",
            "-i", str(input_path),
            "-vn",
            "-ar", str(sample_rate),
            "-c:a", "aac",
            "-b:a", f"{bitrate_kbps}k",
            "-movflags", "+faststart",
            str(output_path),
        ],
        timeout=_render_timeout(),
    )
    require_ok(result, "ffmpeg render_aac")


def apply_gain(
    input_path: Path,
    output_path: Path,
    gain_db: float,
    bit_depth: Union[str, BitDepth] = BitDepth.FLOAT_32,
    sample_rate: int = 44100,
) -> None:
    """Apply a uniform gain change while rendering to WAV"""
    render_wav(
        input_path,
        output_path,
        bit_depth,
        sample_rate,
        filter_graph=gain_filter(gain_db),
    )


def parse_codec(token: str) -> Tuple[str, int]:
    """
    Split a codec preview token such as "aac-128" into (format, kbps).

    Raises:
        AudioProcessingError: If the token is malformed or the format unknown
    """
    parts = token.split("-")
    if len(parts) != 2:
        raise AudioProcessingError(f"Invalid codec format: {token}")
    fmt, bitrate = parts
    if fmt not in PREVIEW_ENCODERS:
        raise AudioProcessingError(f"Unsupported codec: {fmt}")
    try:
        kbps = int(bitrate)
    except ValueError:
        raise AudioProcessingError(f"Invalid bitrate in codec token: {token}")
    if kbps <= 0:
        raise AudioProcessingError(f"Invalid bitrate in codec token: {token}")
    return fmt, kbps


def preview_extension(token: str) -> str:
    fmt, _ = parse_codec(token)
    return PREVIEW_ENCODERS[fmt][1]


def render_codec_preview(input_path: Path, output_path: Path, codec_token: str) -> None:
    """Encode a lossy preview for a codec token ("aac-128", "mp3-320", "opus-96")"""
    fmt, kbps = parse_codec(codec_token)
    encoder, _ = PREVIEW_ENCODERS[fmt]

    result = run(
        "ffmpeg",
        [
            "-hide_banner",
            "-y",
            "-i", str(input_path),
            "-vn",
            "-c:a", encoder,
            "-b:a", f"{kbps}k",
            str(output_path),
        ],
        timeout=_render_timeout(),
    )
    require_ok(result, f"ffmpeg codec preview {codec_token}")


def decode_to_wav(input_path: Path, output_path: Path) -> None:
    """Decode any audio file to 24-bit PCM WAV for analysis"""
    result = run(
        "ffmpeg",
        [
            "-hide_banner",
            "-y",
            "-i", str(input_path),
            "-vn",
            "-c:a", "pcm_s24le",
            str(output_path),
        ],
        timeout=_render_timeout(),
    )
    require_ok(result, "ffmpeg decode_to_wav")
