"""
==============================================================================
Stock Scanner Settings
==============================================================================

One Settings object, read from the environment (then .env, then the
defaults below) and cached by get_settings().

Groups:
-------
- Server and CORS
- Local inventory database and seed catalog
- Camera, decode rate, OCR cadence and preprocessing, debounce window
- Transaction staleness and session history
- Inventory backend (local SQL or remote REST)
- Browser camera transport security
- Session summary logs

Scanner Timing Defaults:
-----------------------
- Structured decode: 15 frames/sec
- OCR fallback: one pass every 2 seconds
- Debounce cooldown: 2 seconds
- Stock staleness: 5 seconds before a fresh read on SELL/STOCK_OUT

==============================================================================
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Module logger
logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Scanner service configuration.

    Attributes:
        app_name: Display name for the application
        app_env: Environment mode (development/staging/production)
        debug: Enable debug mode for verbose logging
        host: Server bind address
        port: Server port number
        database_url: SQLAlchemy connection string for the local inventory
        products_file: Seed catalog JSON loaded into an empty inventory
        seed_on_startup: Seed the inventory from products_file at startup
        camera_index: Local capture device index
        preferred_facing: Camera facing requested on open
        camera_zoom_range: Zoom range assumed for local devices
        structured_decode_fps: Target rate for barcode/QR decoding
        ocr_interval_seconds: Cadence of the OCR fallback
        ocr_crop_fraction: Bottom share of the frame handed to OCR
        ocr_contrast: Contrast boost applied before OCR
        ocr_brightness: Brightness boost applied before OCR
        tesseract_cmd: Explicit tesseract binary path
        debounce_cooldown_seconds: Window in which a repeated code is ignored
        frame_queue_size: Buffered client frames before the oldest is dropped
        stock_staleness_seconds: Age after which stock is re-read
        history_size: Committed movements kept per session
        inventory_backend: "sql" (local database) or "http" (REST service)
        inventory_api_url: Base URL of the REST inventory service
        inventory_timeout_seconds: REST request timeout
        secure_hosts: Hosts accepted as secure for browser camera frames
        allow_insecure_camera: Accept browser frames over plain ws://
        log_directory: Directory for session summary logs
        session_logs_enabled: Write a summary log when a session closes
        cors_origins: Allowed CORS origins (JSON array string)
    """

    # =========================================================================
    # PYDANTIC SETTINGS CONFIGURATION
    # =========================================================================
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True,
    )

    # =========================================================================
    # APPLICATION SETTINGS
    # =========================================================================
    app_name: str = Field(
        default="Stock Scanner",
        description="Display name for the application"
    )

    app_env: str = Field(
        default="development",
        description="Environment mode: development, staging, production"
    )

    debug: bool = Field(
        default=False,
        description="Enable debug mode for verbose logging"
    )

    # =========================================================================
    # SERVER SETTINGS
    # =========================================================================
    host: str = Field(
        default="0.0.0.0",
        description="Server bind address"
    )

    port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="Server port number"
    )

    # =========================================================================
    # DATABASE SETTINGS
    # =========================================================================
    database_url: str = Field(
        default="sqlite:///./storage/db/inventory.db",
        description="SQLAlchemy database connection string"
    )

    products_file: str = Field(
        default="data/products.json",
        description="Seed catalog JSON"
    )

    seed_on_startup: bool = Field(
        default=True,
        description="Seed an empty inventory from products_file"
    )

    # =========================================================================
    # CAMERA SETTINGS
    # =========================================================================
    camera_index: int = Field(
        default=0,
        ge=0,
        description="Local capture device index"
    )

    preferred_facing: str = Field(
        default="environment",
        description="Camera facing requested on open: environment or user"
    )

    camera_zoom_range: Optional[Tuple[float, float]] = Field(
        default=None,
        description="Zoom range of the local device, None if unsupported"
    )

    # =========================================================================
    # DECODE SETTINGS
    # =========================================================================
    structured_decode_fps: float = Field(
        default=15.0,
        gt=0,
        le=60,
        description="Target frames per second for barcode/QR decoding"
    )

    ocr_interval_seconds: float = Field(
        default=2.0,
        gt=0,
        le=30,
        description="Seconds between OCR fallback passes"
    )

    ocr_crop_fraction: float = Field(
        default=0.3,
        gt=0,
        le=1,
        description="Bottom fraction of the frame read by OCR"
    )

    ocr_contrast: float = Field(
        default=1.5,
        gt=0,
        le=5,
        description="Contrast multiplier applied before OCR"
    )

    ocr_brightness: float = Field(
        default=1.2,
        gt=0,
        le=5,
        description="Brightness multiplier applied before OCR"
    )

    tesseract_cmd: Optional[str] = Field(
        default=None,
        description="Path to the tesseract binary (PATH lookup if unset)"
    )

    debounce_cooldown_seconds: float = Field(
        default=2.0,
        ge=0,
        le=60,
        description="Cooldown during which the same code is ignored"
    )

    frame_queue_size: int = Field(
        default=2,
        ge=1,
        le=30,
        description="Client frames buffered before dropping the oldest"
    )

    # =========================================================================
    # TRANSACTION SETTINGS
    # =========================================================================
    stock_staleness_seconds: float = Field(
        default=5.0,
        ge=0,
        le=300,
        description="Stock older than this is re-read before SELL/STOCK_OUT"
    )

    history_size: int = Field(
        default=20,
        ge=1,
        le=500,
        description="Committed movements kept in the session history"
    )

    # =========================================================================
    # INVENTORY BACKEND SETTINGS
    # =========================================================================
    inventory_backend: str = Field(
        default="sql",
        description="Inventory backend: sql or http"
    )

    inventory_api_url: str = Field(
        default="http://localhost:8000",
        description="Base URL of the REST inventory service"
    )

    inventory_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="REST inventory request timeout"
    )

    # =========================================================================
    # TRANSPORT SECURITY SETTINGS
    # =========================================================================
    secure_hosts: List[str] = Field(
        default=["localhost", "127.0.0.1"],
        description="Hosts treated as secure for browser camera access"
    )

    allow_insecure_camera: bool = Field(
        default=False,
        description="Accept browser camera frames over an insecure transport"
    )

    # =========================================================================
    # FILE PATH SETTINGS
    # =========================================================================
    log_directory: str = Field(
        default="storage/logs",
        description="Directory for scan session summary logs"
    )

    session_logs_enabled: bool = Field(
        default=True,
        description="Write a summary log for sessions with committed movements"
    )

    # =========================================================================
    # CORS SETTINGS
    # =========================================================================
    cors_origins: str = Field(
        default='["*"]',
        description="Allowed CORS origins as JSON array string"
    )

    # =========================================================================
    # VALIDATORS
    # =========================================================================
    @field_validator("app_env")
    @classmethod
    def validate_app_env(cls, value: str) -> str:
        """
        Validate and normalize application environment.

        Args:
            value: Raw environment value

        Returns:
            Lowercase normalized environment name
        """
        valid_envs = {"development", "staging", "production"}
        normalized = value.lower().strip()

        if normalized not in valid_envs:
            logger.warning(
                f"Unknown environment '{value}', defaulting to 'development'"
            )
            return "development"

        return normalized

    @field_validator("preferred_facing")
    @classmethod
    def validate_preferred_facing(cls, value: str) -> str:
        """Normalize camera facing to environment/user."""
        normalized = value.lower().strip()
        if normalized not in {"environment", "user"}:
            raise ValueError(
                f"Unsupported camera facing: {value}. Use 'environment' or 'user'"
            )
        return normalized

    @field_validator("inventory_backend")
    @classmethod
    def validate_inventory_backend(cls, value: str) -> str:
        """Validate the inventory backend name."""
        normalized = value.lower().strip()
        if normalized not in {"sql", "http"}:
            raise ValueError(
                f"Unsupported inventory backend: {value}. Use 'sql' or 'http'"
            )
        return normalized

    @model_validator(mode="after")
    def validate_zoom_range(self) -> "Settings":
        """Zoom range must be ordered and at least 1x."""
        if self.camera_zoom_range is not None:
            low, high = self.camera_zoom_range
            if low < 1 or high < low:
                raise ValueError(
                    f"Invalid camera_zoom_range {self.camera_zoom_range}"
                )
        return self

    # =========================================================================
    # COMPUTED PROPERTIES
    # =========================================================================
    @property
    def log_path(self) -> Path:
        """Session log directory, created on first access."""
        path = Path(self.log_directory)
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def products_path(self) -> Path:
        """Get the seed catalog file as Path object."""
        return Path(self.products_file)

    @property
    def decode_interval_seconds(self) -> float:
        """Minimum time between two structured decode passes."""
        return 1.0 / self.structured_decode_fps

    @property
    def cors_origins_list(self) -> List[str]:
        """CORS origins decoded from the JSON array string, ["*"] when malformed."""
        try:
            origins = json.loads(self.cors_origins)
            if isinstance(origins, list):
                return origins
            return ["*"]
        except json.JSONDecodeError:
            logger.warning(
                f"Invalid CORS origins JSON: {self.cors_origins}, "
                "defaulting to ['*']"
            )
            return ["*"]

    # =========================================================================
    # UTILITY METHODS
    # =========================================================================
    def get_database_path(self) -> Optional[Path]:
        """
        Extract database file path for SQLite databases.

        Returns:
            Path to database file, or None for in-memory and non-SQLite URLs
        """
        if not self.database_url.startswith("sqlite:///"):
            return None

        db_path = self.database_url.replace("sqlite:///", "")
        if not db_path or db_path == ":memory:":
            return None
        if db_path.startswith("./"):
            db_path = db_path[2:]
        return Path(db_path)

    def ensure_directories(self) -> None:
        """Create the log directory and the SQLite database directory."""
        self.log_path.mkdir(parents=True, exist_ok=True)

        db_path = self.get_database_path()
        if db_path:
            db_path.parent.mkdir(parents=True, exist_ok=True)

        logger.debug("Required directories created/verified")

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"Settings(app_name={self.app_name!r}, "
            f"app_env={self.app_env!r}, "
            f"inventory_backend={self.inventory_backend!r}, "
            f"debug={self.debug})"
        )


# =============================================================================
# SINGLETON INSTANCE MANAGEMENT
# =============================================================================

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get the global Settings instance (singleton pattern).

    Returns:
        Global Settings instance

    Example:
        >>> settings = get_settings()
        >>> settings.debounce_cooldown_seconds
        2.0
    """
    settings = Settings()

    settings.ensure_directories()

    if settings.debug:
        logger.info(f"Configuration loaded: {settings}")

    return settings
