"""Application configuration using Pydantic settings."""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_FONT_FAMILIES = ("Helvetica", "Times", "Courier")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PDFOVERLAY_",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="PDF Overlay Compositor")
    app_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Storage
    temp_dir: str = Field(default="./temp")
    max_upload_mb: int = Field(default=50, gt=0)

    # Geometry
    min_pdf_size_pt: float = Field(default=10.0, gt=0, description="Fallback size for degenerate rects")
    chrome_inset_x: float = Field(default=2.0, ge=0, description="Horizontal gizmo padding in px")
    chrome_inset_y: float = Field(default=0.0, ge=0, description="Vertical gizmo padding in px")

    # Interaction
    history_limit: int = Field(default=50, ge=1)
    min_gizmo_width_px: float = Field(default=30.0, gt=0)
    min_gizmo_height_px: float = Field(default=20.0, gt=0)
    nudge_step_px: float = Field(default=10.0, gt=0)
    nudge_fine_step_px: float = Field(default=1.0, gt=0)
    rotation_snap_degrees: float = Field(default=15.0, gt=0)
    handle_size_px: float = Field(default=12.0, gt=0)

    # Rendering
    default_font_size: float = Field(default=12.0, gt=0)
    default_font_family: str = Field(default="Helvetica")

    # Image processing
    magick_binary: str | None = Field(default=None, description="magick or convert; autodetected if unset")
    background_threshold: int = Field(default=240, ge=0, le=255)
    background_feather: float = Field(default=2.0, ge=0)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of {allowed}")
        return v.upper()

    @field_validator("default_font_family")
    @classmethod
    def validate_font_family(cls, v: str) -> str:
        """Validate the default font family."""
        if v not in SUPPORTED_FONT_FAMILIES:
            raise ValueError(f"Font family must be one of {list(SUPPORTED_FONT_FAMILIES)}")
        return v

    def get_temp_dir(self) -> Path:
        """Get temp directory as Path object."""
        return Path(self.temp_dir)

    def ensure_directories(self) -> None:
        """Ensure all required directories exist."""
        Path(self.temp_dir).mkdir(parents=True, exist_ok=True)


# Global settings instance
settings = Settings()
