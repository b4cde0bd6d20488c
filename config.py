"""
Centralized configuration for the video sharing backend.

All values come from the environment (a local .env file is loaded first).
"""

import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class MongoConfig:
    """MongoDB connection settings."""

    url: str = field(default_factory=lambda: os.getenv(
        "DATABASE_URL", "mongodb://localhost:27017"))
    database: str = field(default_factory=lambda: os.getenv(
        "DATABASE_NAME", "vidshare"))
    # Multi-document transactions need a replica set or sharded cluster
    use_transactions: bool = field(
        default_factory=lambda: _flag("MONGO_TRANSACTIONS"))


@dataclass
class ServerConfig:
    """Server runtime configuration."""

    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))
    debug: bool = field(default_factory=lambda: _flag("DEBUG"))
    log_level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    cors_origins: List[str] = field(
        default_factory=lambda: os.getenv("CORS_ORIGINS", "*").split(","))


@dataclass
class MediaConfig:
    """Where uploaded media lands and how it is served."""

    upload_dir: str = field(default_factory=lambda: os.getenv(
        "UPLOAD_DIR", os.path.join(os.getcwd(), "uploads")))
    base_url: str = field(
        default_factory=lambda: os.getenv("MEDIA_BASE_URL", "/static"))
    default_avatar_url: str = field(default_factory=lambda: os.getenv(
        "DEFAULT_AVATAR_URL", "/static/defaults/avatar.jpg"))
    default_banner_url: str = field(default_factory=lambda: os.getenv(
        "DEFAULT_BANNER_URL", "/static/defaults/banner.jpg"))


@dataclass
class Config:
    """
    Root configuration object aggregating all config sections.

    Usage:
        config = Config()
        mongo_url = config.mongo.url
    """

    mongo: MongoConfig = field(default_factory=MongoConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    media: MediaConfig = field(default_factory=MediaConfig)

    def validate(self) -> List[str]:
        """
        Validate configuration and return a list of warnings.

        Returns:
            List of validation messages (empty if all valid)
        """
        warnings = []

        if "localhost" in self.mongo.url and not self.server.debug:
            warnings.append("DATABASE_URL points at localhost in production mode")

        if self.mongo.use_transactions and "replicaSet" not in self.mongo.url:
            warnings.append(
                "MONGO_TRANSACTIONS is on but DATABASE_URL names no replicaSet")

        if "*" in self.server.cors_origins and not self.server.debug:
            warnings.append("CORS allows every origin in production mode")

        return warnings


# Global config instance - import and use this
config = Config()
