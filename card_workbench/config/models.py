"""Pydantic models for configuration validation."""

from typing import Dict, Optional
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict


DEFAULT_INSTRUCTION = (
    "Rewrite the character card sections below as requested. "
    "Keep every ### 【title】 marker exactly as written, keep every line break "
    "and list marker, do not merge paragraphs, and output the sections in the "
    "same order."
)


class SegmentationConfig(BaseModel):
    """Thresholds that decide when a card is split into several work units."""

    word_threshold: int = Field(default=3500, ge=0, description="Character volume above which a card is segmented")
    world_book_threshold: int = Field(default=8, ge=0, description="Lorebook entry count above which a card is segmented")
    alternate_greetings_threshold: int = Field(default=5, ge=0, description="Alternate greeting count above which a card is segmented")
    greeting_batch_size: int = Field(default=5, gt=0)
    world_book_batch_size: int = Field(default=10, gt=0)


class ExportConfig(BaseModel):
    """Card export configuration."""

    preserve_text_chunks: bool = Field(
        default=False,
        description="Keep unrelated tEXt/iTXt/zTXt chunks when rewriting a PNG card"
    )
    strip_exif: bool = Field(
        default=False,
        description="Drop eXIf chunks as legacy metadata residue when rewriting a PNG card"
    )
    json_indent: Optional[int] = Field(
        default=None,
        ge=0,
        le=8,
        description="Indentation for exported JSON (None = compact)"
    )


class PromptConfig(BaseModel):
    """External editing instructions, keyed by target name."""

    default_target: str = "default"
    instructions: Dict[str, str] = Field(default_factory=lambda: {"default": DEFAULT_INSTRUCTION})

    @field_validator('instructions')
    @classmethod
    def validate_instructions(cls, v: Dict[str, str]) -> Dict[str, str]:
        """Reject blank instruction texts."""
        for name, text in v.items():
            if not text or not text.strip():
                raise ValueError(f"instruction '{name}' must not be empty")
        return v

    @model_validator(mode='after')
    def validate_default_target(self) -> 'PromptConfig':
        """Ensure the default target is one of the configured instructions."""
        if self.default_target not in self.instructions:
            raise ValueError(f"default_target '{self.default_target}' has no instruction")
        return self


class SystemConfig(BaseModel):
    """Top-level system configuration."""

    model_config = ConfigDict(extra='ignore')

    segmentation: SegmentationConfig = Field(default_factory=SegmentationConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
    prompts: PromptConfig = Field(default_factory=PromptConfig)
    debug: bool = False
    api_host: str = "localhost"
    api_port: int = Field(default=8080, gt=0, le=65535)
