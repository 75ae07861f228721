from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # Scanning
    chunk_size: int = 64 * 1024
    progress_interval: int = 10_000
    validate_fragments: bool = True

    # Empty-result placeholder series length, in calendar days
    fallback_days: int = 7

    # Output storage
    storage_backend: Literal["file", "s3"] = "file"
    output_dir: str = "public/data"
    aws_region: str = "us-east-1"
    aws_bucket_name: Optional[str] = None

    @property
    def debug(self) -> bool:
        """Debug mode is only enabled in development."""
        return self.environment == "development"

    class Config:
        env_prefix = "HEALTHKIT_"
        env_file = ".env"
        extra = "ignore"

    def validate_storage(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError("HEALTHKIT_CHUNK_SIZE must be positive")
        if self.storage_backend == "s3" and not self.aws_bucket_name:
            raise ValueError("HEALTHKIT_AWS_BUCKET_NAME must be set when storage_backend is s3")


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    settings.validate_storage()
    return settings
