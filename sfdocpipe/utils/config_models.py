from pydantic import BaseModel, Field, model_validator
from typing import Dict, Any, List, Optional


class ComponentConfig(BaseModel):
    """A model for a single component's configuration (fetcher, embedder, etc.)"""

    type: str
    config: Dict[str, Any] = {}


class PipelineSettings(BaseModel):
    """Run-wide knobs shared by several components."""

    max_chunk_size: int = Field(default=1500, gt=0)
    chunk_overlap: int = Field(default=200, ge=0)
    boundary_tolerance: float = Field(default=0.2, ge=0.0, le=1.0)
    embedding_batch_size: int = Field(default=50, gt=0)
    embedding_dimensions: int = Field(default=1536, gt=0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_backoff: float = Field(default=1.0, ge=0.0)
    parallelism: int = Field(default=4, ge=1)
    notify_on_failure: bool = False
    skip_unchanged: bool = False

    @model_validator(mode="after")
    def check_overlap(self) -> "PipelineSettings":
        if self.chunk_overlap >= self.max_chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be smaller than "
                f"max_chunk_size ({self.max_chunk_size})"
            )
        return self


class PipelineConfig(BaseModel):
    """The top-level model for the entire pipeline.yaml configuration."""

    urls: List[str] = Field(min_length=1)
    settings: PipelineSettings = PipelineSettings()
    fetcher: ComponentConfig = ComponentConfig(type="web")
    embedder: ComponentConfig
    store: ComponentConfig
    notifier: Optional[ComponentConfig] = None
    state: Optional[ComponentConfig] = None
