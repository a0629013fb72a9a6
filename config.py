"""
Configuration module for Form 34 Results Capture.

Centralizes all settings and environment variables for easy configuration.

Usage:
    from config import config

    print(config.results_api_base_url)
    print(config.draft_store_dir)
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class Config:
    """
    Application configuration loaded from environment variables.

    All settings can be overridden via environment variables.
    """

    # Remote endpoints
    results_api_base_url: str = "https://skizagroundsuite.com/API"
    ocr_34a_url: str = "https://skizagroundsuite.com/OCR/iebc_ocr_34a.php"
    ocr_34b_url: str = "https://skizagroundsuite.com/OCR/iebc_ocr_34b.php"

    # API credentials
    api_token: Optional[str] = None

    # Network Settings
    api_timeout: int = 12  # seconds
    ocr_timeout: int = 60  # seconds
    max_retries: int = 3

    # OCR Upload Settings
    max_file_size: int = 10 * 1024 * 1024  # 10MB

    # Local storage for drafts and submission guards
    draft_store_dir: str = ".results_drafts"

    # Logging Settings
    log_level: str = "INFO"

    def __post_init__(self):
        """Load configuration from environment variables."""
        # Endpoints
        self.results_api_base_url = os.environ.get("RESULTS_API_BASE_URL", self.results_api_base_url).rstrip("/")
        self.ocr_34a_url = os.environ.get("OCR_34A_URL", self.ocr_34a_url)
        self.ocr_34b_url = os.environ.get("OCR_34B_URL", self.ocr_34b_url)

        # Credentials
        self.api_token = os.environ.get("RESULTS_API_TOKEN")

        # Network
        self.api_timeout = int(os.environ.get("API_TIMEOUT", "12"))
        self.ocr_timeout = int(os.environ.get("OCR_TIMEOUT", "60"))
        self.max_retries = int(os.environ.get("MAX_RETRIES", "3"))

        # Uploads
        self.max_file_size = int(os.environ.get("MAX_FILE_SIZE", str(10 * 1024 * 1024)))

        # Storage
        self.draft_store_dir = os.environ.get("DRAFT_STORE_DIR", ".results_drafts")

        # Logging
        self.log_level = os.environ.get("LOG_LEVEL", "INFO")

    @property
    def has_api_token(self) -> bool:
        """Check if an API token is configured."""
        return bool(self.api_token)

    def validate(self) -> list[str]:
        """
        Validate configuration and return list of issues.

        Returns:
            List of configuration issues (empty if valid)
        """
        issues = []

        if not self.results_api_base_url.startswith(("http://", "https://")):
            issues.append(f"RESULTS_API_BASE_URL must be an http(s) URL, got {self.results_api_base_url!r}")

        for name, url in (("OCR_34A_URL", self.ocr_34a_url), ("OCR_34B_URL", self.ocr_34b_url)):
            if not url.startswith(("http://", "https://")):
                issues.append(f"{name} must be an http(s) URL, got {url!r}")

        if self.api_timeout < 1:
            issues.append(f"API_TIMEOUT must be at least 1 second, got {self.api_timeout}")

        if self.ocr_timeout < 10:
            issues.append(f"OCR_TIMEOUT should be at least 10 seconds, got {self.ocr_timeout}")

        if self.max_retries < 1:
            issues.append(f"MAX_RETRIES must be at least 1, got {self.max_retries}")

        if self.max_file_size <= 0:
            issues.append(f"MAX_FILE_SIZE must be positive, got {self.max_file_size}")

        return issues

    def to_dict(self) -> dict:
        """Convert configuration to dictionary (safe for logging)."""
        return {
            "results_api_base_url": self.results_api_base_url,
            "ocr_34a_url": self.ocr_34a_url,
            "ocr_34b_url": self.ocr_34b_url,
            "api_timeout": self.api_timeout,
            "ocr_timeout": self.ocr_timeout,
            "max_retries": self.max_retries,
            "max_file_size": self.max_file_size,
            "draft_store_dir": self.draft_store_dir,
            "log_level": self.log_level,
            "has_api_token": self.has_api_token,
            # Note: the API token is NOT included for security
        }


# Global configuration instance
config = Config()


def get_config() -> Config:
    """Get the global configuration instance."""
    return config


def reload_config() -> Config:
    """Reload configuration from environment variables."""
    global config
    config = Config()
    return config
