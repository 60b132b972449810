from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Aesthetic(str, Enum):
    DARK_ACADEMIA = "dark-academia"
    PARANORMAL_ROMANCE = "paranormal-romance"
    PARANORMAL_COZY = "paranormal-cozy"
    PARANORMAL_DARK = "paranormal-dark"
    COZY_FANTASY = "cozy-fantasy"
    CONTEMPORARY = "contemporary"
    MYSTERY_THRILLER = "mystery-thriller"
    ROMANTASY = "romantasy"
    CINEMATIC = "cinematic"


class VoiceIdentity(str, Enum):
    MALE = "male"
    FEMALE = "female"
    MYSTERIOUS = "mysterious"


class QualityTier(str, Enum):
    QUICK = "quick"
    STANDARD = "standard"
    PREMIUM = "premium"

    @property
    def preset(self) -> Tuple[int, bool]:
        """(scene count, Ken Burns effects) for this tier."""
        return QUALITY_PRESETS[self]


QUALITY_PRESETS = {
    QualityTier.QUICK: (3, False),
    QualityTier.STANDARD: (4, False),
    QualityTier.PREMIUM: (6, True),
}


class PipelineStage(str, Enum):
    PENDING = "pending"
    SCRIPTING = "scripting"
    IMAGING = "imaging"
    VOICING = "voicing"
    COMPILING = "compiling"
    COMPLETED = "completed"
    FAILED = "failed"


class VideoStatus(str, Enum):
    NONE = "none"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenerationRequest(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    summary: str
    title: str = "Book Preview"
    aesthetic: Aesthetic = Aesthetic.CINEMATIC
    voice_type: VoiceIdentity = VoiceIdentity.FEMALE
    num_images: int = Field(default=4, ge=1)
    use_effects: bool = False

    @field_validator("summary")
    @classmethod
    def _summary_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("summary must not be empty")
        return v

    @classmethod
    def for_quality(cls, quality: QualityTier, **fields) -> "GenerationRequest":
        quality = QualityTier(quality)
        num_images, use_effects = quality.preset
        if quality is QualityTier.STANDARD and fields.get("num_images"):
            # standard honours an explicit scene count
            num_images = fields["num_images"]
        fields.update(num_images=num_images, use_effects=use_effects)
        return cls(**fields)


class ImageAsset(BaseModel):
    """One generated image: a hosted URL, a data URI, or raw bytes."""

    index: int
    url: Optional[str] = None
    data: Optional[bytes] = None

    @property
    def is_data_uri(self) -> bool:
        return bool(self.url and self.url.startswith("data:image"))


class AudioAsset(BaseModel):
    audio: bytes
    duration_seconds: int


class VideoArtifact(BaseModel):
    video_path: str
    duration: float
    session_id: str
    image_count: int


class VideoMetadata(_CamelModel):
    title: str
    aesthetic: str
    narration: str
    image_count: int
    session_id: str


class GenerationResult(_CamelModel):
    success: bool
    video_path: Optional[str] = None
    video_buffer: Optional[bytes] = Field(default=None, exclude=True, repr=False)
    duration: Optional[float] = None
    metadata: Optional[VideoMetadata] = None
    error: Optional[str] = None
    stage: PipelineStage = PipelineStage.PENDING


class PipelineHealth(_CamelModel):
    media_tool: bool
    image_generation: bool
    voice_generation: bool
    ready: bool


class OrchestrationState(BaseModel):
    request: GenerationRequest
    stage: PipelineStage = PipelineStage.PENDING
    narration: Optional[str] = None
    images: List[ImageAsset] = Field(default_factory=list)
    audio: Optional[AudioAsset] = None
    artifact: Optional[VideoArtifact] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BookVideoRecord(_CamelModel):
    """The slice of a persisted book that the pipeline's caller reads and writes."""

    book_id: str
    video_status: VideoStatus = VideoStatus.NONE
    video_url: Optional[str] = None
    video_error: Optional[str] = None
    stage: Optional[PipelineStage] = None
    version: int = 0
    updated_at: datetime = Field(default_factory=_utcnow)
