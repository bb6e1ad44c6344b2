"""
Pydantic schemas for job queue messages.

Every message on a job queue is a JSON object tagged by ``type``. Decoding
selects exactly one variant; unknown tags and malformed fields are
rejected as ValidationError before any work starts.
"""

import json
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from src.exceptions import ValidationError


# ============================================================================
# Message Variants
# ============================================================================

class TrackExportMessage(BaseModel):
    """
    Request to run the Release-Ready gate and render delivery formats.

    Attributes:
        jobId: Job-tracking record id
        exportJobId: ExportJob record id
        trackId: Owning track id
        sourceUrl: gs:// or http(s):// URL of the source audio
        bitDepth: "16", "24" or "32f"
        sampleRate: 44100 or 48000
        truePeakCeilingDb: Ceiling in dBTP, within [-20, 0]
        includeMp3: Also render a 320 kbps MP3
        includeAac: Also render a 256 kbps AAC
    """
    type: Literal["track-export"] = "track-export"
    jobId: str = Field(..., min_length=1, description="Job-tracking record id")
    exportJobId: str = Field(..., min_length=1, description="ExportJob record id")
    trackId: str = Field(..., min_length=1, description="Owning track id")
    sourceUrl: str = Field(..., min_length=1, description="Source audio URL")
    bitDepth: Literal["16", "24", "32f"] = Field(..., description="WAV bit depth token")
    sampleRate: Literal[44100, 48000] = Field(..., description="Output sample rate in Hz")
    truePeakCeilingDb: float = Field(
        ...,
        ge=-20.0,
        le=0.0,
        description="True-peak ceiling in dBTP",
    )
    includeMp3: bool = Field(default=True, description="Render MP3 320 kbps")
    includeAac: bool = Field(default=True, description="Render AAC 256 kbps")

    @field_validator("bitDepth", mode="before")
    @classmethod
    def coerce_bit_depth(cls, v: Any) -> Any:
        # Producers sometimes send 16 / 24 as numbers
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class CodecPreviewMessage(BaseModel):
    """Request to encode lossy previews of a master and score them"""
    type: Literal["codec-preview"] = "codec-preview"
    jobId: str = Field(..., min_length=1)
    trackId: str = Field(..., min_length=1)
    masterUrl: str = Field(..., min_length=1)
    codecs: List[str] = Field(..., min_length=1, description="Tokens like 'aac-128'")

    @field_validator("codecs")
    @classmethod
    def validate_codec_tokens(cls, v: List[str]) -> List[str]:
        for token in v:
            parts = token.split("-")
            if len(parts) != 2 or not parts[0] or not parts[1].isdigit():
                raise ValueError(f"Invalid codec token: {token}")
        return v


QueueMessage = Annotated[
    Union[TrackExportMessage, CodecPreviewMessage],
    Field(discriminator="type"),
]

_queue_message_adapter = TypeAdapter(QueueMessage)


# ============================================================================
# Encoding / Decoding
# ============================================================================

def decode_message(raw: Union[str, bytes, Dict[str, Any]]) -> Union[TrackExportMessage, CodecPreviewMessage]:
    """
    Decode a queue payload into its message variant.

    Args:
        raw: JSON text/bytes from the queue, or an already-parsed dict

    Returns:
        TrackExportMessage or CodecPreviewMessage

    Raises:
        ValidationError: If the payload is not valid JSON, has an unknown
            ``type`` or fails field validation
    """
    try:
        if isinstance(raw, dict):
            return _queue_message_adapter.validate_python(raw)
        return _queue_message_adapter.validate_json(raw)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid queue message: {e.error_count()} validation error(s)",
            details={"errors": json.loads(e.json())},
        ) from e


def encode_message(message: Union[TrackExportMessage, CodecPreviewMessage]) -> str:
    """Serialize a message variant to the JSON stored on the queue"""
    return message.model_dump_json()


def parse_payload(payload: Any) -> Optional[Dict[str, Any]]:
    """The payload as a JSON object without validating fields, or None"""
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError:
            return None
    return payload if isinstance(payload, dict) else None


def message_job_id(payload: Any) -> str:
    """Best-effort job id from a payload that may not have decoded"""
    fields = parse_payload(payload)
    if fields is None:
        return "unknown"
    return str(fields.get("jobId") or "unknown")
