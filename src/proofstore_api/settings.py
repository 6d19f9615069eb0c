from __future__ import annotations
from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    host: str = Field(default="127.0.0.1", alias="PROOFSTORE_HOST")
    port: int = Field(default=8080, alias="PROOFSTORE_PORT")

    # Upper bound on a single frame's declared length (tag + body, bytes)
    max_frame_bytes: int = Field(default=1048576, alias="PROOFSTORE_MAX_FRAME_BYTES")

    # Socket timeout in seconds; unset means fully blocking reads/writes
    io_timeout: Optional[float] = Field(default=None, alias="PROOFSTORE_IO_TIMEOUT")

    log_level: str = Field(default="INFO", alias="PROOFSTORE_LOG_LEVEL")

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()  # load at import
