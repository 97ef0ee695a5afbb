"""
Configuration management using Pydantic Settings
"""
from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env from project root
# config.py is at: backend/zkweather/core/config.py
# Project root is: backend/zkweather/core/../../../
_current_file = Path(__file__).resolve()
_backend_dir = _current_file.parent.parent.parent
_project_root = _backend_dir.parent
ENV_FILE = _project_root / ".env"
# Fallback: try in backend/ directory if not found in project root
if not ENV_FILE.exists():
    ENV_FILE = _backend_dir / ".env"
if ENV_FILE.exists():
    load_dotenv(ENV_FILE, override=False)

# Operations that go through the retry executor
COMPILE = "compile"
SETUP = "setup"
GENERATE_PROOF = "generateProof"
EXPORT_VERIFIER = "exportVerifier"

HEAVY_OPERATIONS = (SETUP, GENERATE_PROOF)


def _parse_delays(v):
    """Parse a delay schedule from a comma-separated string or a single value"""
    if isinstance(v, str):
        return [int(part.strip()) for part in v.split(",") if part.strip()]
    # Env values are JSON-decoded first, so "5000" arrives as an int
    if isinstance(v, int) and not isinstance(v, bool):
        return [v]
    return v


class RetryPolicy(BaseModel):
    """Attempt limit and backoff schedule for one operation kind"""
    max_attempts: int = Field(default=3, ge=1)
    delays_ms: List[int] = Field(default_factory=lambda: [1000, 2000, 5000])

    @field_validator("delays_ms")
    @classmethod
    def check_delays(cls, v: List[int]) -> List[int]:
        if not v:
            raise ValueError("delay schedule must not be empty")
        if any(d < 0 for d in v):
            raise ValueError("delays must be non-negative")
        return v

    def delay_for_attempt(self, attempt: int) -> int:
        """Delay (ms) after a failed attempt, clamped to the last configured value"""
        index = min(max(attempt - 1, 0), len(self.delays_ms) - 1)
        return self.delays_ms[index]


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "zk-weather"
    app_env: str = Field(default="development", description="Application environment")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="text",
        description="Log format: 'json' for structured logging, 'text' for plain text"
    )
    log_module_levels: Optional[str] = Field(
        default=None,
        description='Module-specific log levels (JSON string, e.g., {"zkweather.core": "DEBUG"})'
    )
    log_file_enabled: bool = Field(default=False, description="Enable file logging")
    log_file_path: str = Field(default="logs/zkweather.log", description="Path to log file")
    log_file_rotation: str = Field(
        default="midnight",
        description="Log file rotation: 'midnight' or 'W0'..'W6' (weekly)"
    )
    log_file_retention: int = Field(default=30, ge=1, description="Number of rotated log files to keep")
    log_blob_max_length: int = Field(
        default=96,
        ge=16,
        description="Hex/byte blobs longer than this are shortened in log messages"
    )

    # Artifact storage
    circuit_path: str = Field(default="circuits", description="Directory holding circuit sources")
    compiled_path: str = Field(default="compiled", description="Directory holding compiled programs")
    proving_key_path: str = Field(default="keys", description="Directory holding proving/verification keys")

    # Weather model
    weather_model_name: str = Field(default="weather-model", description="Circuit name of the weather model")
    features_count: int = Field(default=113, ge=1, description="Number of radar features")
    input_size: int = Field(default=116, ge=1, description="Circuit input width (features + padding)")
    output_size: int = Field(default=1, ge=1, description="Number of circuit outputs")
    circuit_file_suffix: str = ".zok"
    compiled_file_suffix: str = ".json"
    proving_key_file_suffix: str = ".key"
    verification_key_file_suffix: str = ".vk"

    # Proof generation
    proof_generation_timeout_ms: int = Field(default=300000, ge=1, description="Proof generation timeout (ms)")

    # Retry / error handling
    max_retries: int = Field(default=3, ge=1, le=20, description="Attempts per retried operation")
    retry_delays_ms: Union[List[int], str] = Field(
        default_factory=lambda: [1000, 2000, 5000],
        description="Backoff schedule for light operations (ms, comma-separated in env)"
    )
    heavy_retry_delays_ms: Union[List[int], str] = Field(
        default_factory=lambda: [5000, 10000, 30000],
        description="Backoff schedule for key setup and proving (ms, comma-separated in env)"
    )
    enable_detailed_errors: bool = Field(default=True, description="Capture stack traces in error records")
    error_log_size: int = Field(default=100, ge=1, description="Capacity of the in-memory error log")

    # Performance monitoring
    performance_monitoring_enabled: bool = Field(default=True, description="Enable performance monitoring")
    log_compilation_time: bool = Field(default=True, description="Log compilation timings")
    log_proof_generation_time: bool = Field(default=True, description="Log proof generation timings")
    log_memory_usage: bool = Field(default=True, description="Log memory samples")
    memory_sample_limit: int = Field(default=100, ge=1, description="Rolling memory sample buffer size")
    memory_monitor_interval_ms: int = Field(default=5000, ge=10, description="Memory sampling interval (ms)")

    # Input value range (soft bounds, produce warnings only)
    value_range_min: float = Field(default=-1e12, description="Lowest expected feature value")
    value_range_max: float = Field(default=1e12, description="Highest expected feature value")

    # Resource ceilings (advisory, logged when exceeded)
    max_memory_mb: int = Field(default=4096, ge=1, description="Advisory memory ceiling (MB)")
    max_execution_time_ms: int = Field(default=600000, ge=1, description="Advisory execution time ceiling (ms)")

    # Proving backend
    zokrates_binary: str = Field(default="zokrates", description="ZoKrates CLI executable")
    zokrates_stdlib_path: Optional[str] = Field(default=None, description="ZoKrates stdlib path")
    proving_scheme: str = Field(default="g16", description="Proving scheme passed to setup/prove")
    proving_curve: str = Field(default="bn128", description="Curve passed to compile")

    @field_validator("retry_delays_ms", "heavy_retry_delays_ms", mode="before")
    @classmethod
    def parse_delays(cls, v):
        """Parse delay schedules from comma-separated strings"""
        return _parse_delays(v)

    @field_validator("retry_delays_ms", "heavy_retry_delays_ms")
    @classmethod
    def check_delays(cls, v: List[int]) -> List[int]:
        if not v:
            raise ValueError("delay schedule must not be empty")
        return v

    @field_validator("log_format")
    @classmethod
    def check_log_format(cls, v: str) -> str:
        if v.lower() not in ("json", "text"):
            raise ValueError("log_format must be 'json' or 'text'")
        return v.lower()

    @model_validator(mode="after")
    def check_ranges(self):
        if self.value_range_min >= self.value_range_max:
            raise ValueError("value_range_min must be lower than value_range_max")
        if self.input_size < self.features_count:
            raise ValueError("input_size must be at least features_count")
        return self

    @property
    def circuit_dir(self) -> Path:
        return Path(self.circuit_path)

    @property
    def compiled_dir(self) -> Path:
        return Path(self.compiled_path)

    @property
    def key_dir(self) -> Path:
        return Path(self.proving_key_path)

    @property
    def padding_size(self) -> int:
        """Zero values appended after the features"""
        return self.input_size - self.features_count

    def retry_policy(self, operation: str) -> RetryPolicy:
        """Get the retry policy for an operation kind"""
        delays = self.heavy_retry_delays_ms if operation in HEAVY_OPERATIONS else self.retry_delays_ms
        return RetryPolicy(max_attempts=self.max_retries, delays_ms=list(delays))

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE.exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
