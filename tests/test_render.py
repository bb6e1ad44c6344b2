"""
Tests for explicit-codec rendering.

Tests verify:
- Every render passes codec, sample rate and bitrate explicitly
- Dither is applied only when reducing to 16-bit
- Unknown bit depths, sample rates and codec tokens are rejected
"""

from pathlib import Path
from unittest.mock import patch

import pytest

from src.audio.ffmpeg import ToolResult
from src.audio.render import (
    BitDepth,
    apply_gain,
    bits_per_sample,
    decode_to_wav,
    gain_filter,
    parse_bit_depth,
    parse_codec,
    preview_extension,
    render_aac,
    render_codec_preview,
    render_mp3,
    render_wav,
    validate_sample_rate,
    wav_codec,
)
from src.exceptions import AudioProcessingError, ConfigurationError

OK = ToolResult(0, "", "")


def option(args, flag):
    """Value following a command-line flag."""
    return args[args.index(flag) + 1]


@pytest.fixture
def mock_run():
    with patch("src.audio.render.run", return_value=OK) as mock:
        yield mock


class TestBitDepth:
    """Test bit depth tokens."""

    @pytest.mark.parametrize("token,codec,bits", [
        ("16", "pcm_s16le", 16),
        ("24", "pcm_s24le", 24),
        ("32f", "pcm_f32le", 32),
    ])
    def test_mapping(self, token, codec, bits):
        """Test each token maps to an explicit PCM codec."""
        assert wav_codec(token) == codec
        assert bits_per_sample(token) == bits

    def test_enum_passthrough(self):
        """Test BitDepth members are accepted as-is."""
        assert parse_bit_depth(BitDepth.PCM_24) is BitDepth.PCM_24

    @pytest.mark.parametrize("token", ["8", "32", "24bit", "", None])
    def test_invalid(self, token):
        """Test unknown tokens raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            parse_bit_depth(token)


class TestSampleRate:
    """Test sample rate validation."""

    @pytest.mark.parametrize("rate", [44100, 48000])
    def test_supported(self, rate):
        """Test supported rates are returned."""
        assert validate_sample_rate(rate) == rate

    @pytest.mark.parametrize("rate", [22050, 96000, 0])
    def test_unsupported(self, rate):
        """Test other rates raise ConfigurationError."""
        with pytest.raises(ConfigurationError) as exc_info:
            validate_sample_rate(rate)
        assert exc_info.value.details["sample_rate"] == rate


class TestGainFilter:
    """Test the volume filter helper."""

    def test_unity_gain(self):
        """Test no filter is produced for 0 dB."""
        assert gain_filter(0) is None
        assert gain_filter(0.0) is None

    def test_gain(self):
        """Test a negative gain produces a volume filter."""
        assert gain_filter(-1.9) == "volume=-1.9dB"


class TestRenderWav:
    """Test WAV rendering arguments."""

    def test_24_bit(self, mock_run):
        """Test a 24-bit render has no dither."""
        render_wav(Path("in.wav"), Path("out.wav"), "24", 48000)

        cmd, args = mock_run.call_args[0]
        assert cmd == "ffmpeg"
        assert option(args, "-c:a") == "pcm_s24le"
        assert option(args, "-ar") == "48000"
        assert option(args, "-af") == "anull"
        assert args[-1] == "out.wav"

    def test_16_bit_dither(self, mock_run):
        """Test 16-bit renders apply triangular dither after the gain."""
        render_wav(Path("in.wav"), Path("out.wav"), "16", 44100, filter_graph="volume=-2.5dB")

        _, args = mock_run.call_args[0]
        assert option(args, "-c:a") == "pcm_s16le"
        assert option(args, "-af") == "volume=-2.5dB,aresample=dither_method=triangular"

    def test_float_with_filter(self, mock_run):
        """Test 32-bit float keeps only the requested filter."""
        render_wav(Path("in.wav"), Path("out.wav"), BitDepth.FLOAT_32, 44100, filter_graph="volume=-1dB")

        _, args = mock_run.call_args[0]
        assert option(args, "-c:a") == "pcm_f32le"
        assert option(args, "-af") == "volume=-1dB"

    def test_invalid_depth_before_ffmpeg(self, mock_run):
        """Test invalid bit depth fails without running ffmpeg."""
        with pytest.raises(ConfigurationError):
            render_wav(Path("in.wav"), Path("out.wav"), "12", 44100)
        mock_run.assert_not_called()

    def test_ffmpeg_failure(self):
        """Test a non-zero exit raises AudioProcessingError."""
        with patch("src.audio.render.run", return_value=ToolResult(1, "", "Invalid data")):
            with pytest.raises(AudioProcessingError):
                render_wav(Path("in.wav"), Path("out.wav"), "24", 44100)

    def test_apply_gain(self, mock_run):
        """Test apply_gain renders through the volume filter."""
        apply_gain(Path("in.wav"), Path("out.wav"), -3.0, bit_depth="24", sample_rate=48000)

        _, args = mock_run.call_args[0]
        assert option(args, "-af") == "volume=-3.0dB"


class TestLossyRenders:
    """Test MP3 and AAC renders."""

    def test_mp3(self, mock_run):
        """Test MP3 is encoded with LAME at 320 kbps."""
        render_mp3(Path("in.wav"), Path("out.mp3"), 44100)

        _, args = mock_run.call_args[0]
        assert option(args, "-c:a") == "libmp3lame"
        assert option(args, "-b:a") == "320k"
        assert option(args, "-ar") == "44100"

    def test_aac(self, mock_run):
        """Test AAC is encoded at 256 kbps in a fast-start container."""
        render_aac(Path("in.wav"), Path("out.m4a"), 48000)

        _, args = mock_run.call_args[0]
        assert option(args, "-c:a") == "aac"
        assert option(args, "-b:a") == "256k"
        assert option(args, "-movflags") == "+faststart"


class TestCodecPreview:
    """Test codec preview tokens and encodes."""

    @pytest.mark.parametrize("token,expected", [
        ("aac-128", ("aac", 128)),
        ("mp3-320", ("mp3", 320)),
        ("opus-96", ("opus", 96)),
    ])
    def test_parse_codec(self, token, expected):
        """Test valid tokens split into format and bitrate."""
        assert parse_codec(token) == expected

    @pytest.mark.parametrize("token", ["flac-320", "aac", "aac-abc", "aac-0", "mp3-128-vbr"])
    def test_parse_codec_invalid(self, token):
        """Test malformed or unknown tokens are rejected."""
        with pytest.raises(AudioProcessingError):
            parse_codec(token)

    def test_extensions(self):
        """Test preview file extensions."""
        assert preview_extension("aac-128") == "m4a"
        assert preview_extension("mp3-320") == "mp3"
        assert preview_extension("opus-96") == "ogg"

    def test_render_codec_preview(self, mock_run):
        """Test the preview encoder and bitrate."""
        render_codec_preview(Path("master.wav"), Path("opus-96.ogg"), "opus-96")

        _, args = mock_run.call_args[0]
        assert option(args, "-c:a") == "libopus"
        assert option(args, "-b:a") == "96k"

    def test_decode_to_wav(self, mock_run):
        """Test decodes use 24-bit PCM."""
        decode_to_wav(Path("preview.mp3"), Path("decoded.wav"))

        _, args = mock_run.call_args[0]
        assert option(args, "-c:a") == "pcm_s24le"
