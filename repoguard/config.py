"""Scan configuration and environment settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, Field, field_validator

# Text formats worth scanning, keyed by the last dot-segment of the file name
# (so ".env" -> "env", "Dockerfile" -> "dockerfile").
DEFAULT_EXTENSIONS = frozenset({
    # Python
    "py", "pyw", "pyx", "ipynb",
    # JavaScript / TypeScript
    "js", "jsx", "ts", "tsx", "mjs", "cjs",
    # Web
    "html", "htm", "css", "scss", "vue", "svelte",
    # Data / config
    "json", "yaml", "yml", "toml", "xml", "csv", "ini", "cfg", "conf", "properties", "tf",
    # Docs
    "md", "mdx", "txt", "rst",
    # Config dotfiles
    "env", "envrc", "gitignore", "dockerfile", "npmrc", "pypirc",
    # Shell
    "sh", "bash", "zsh", "ps1",
    # Other languages
    "go", "rs", "rb", "php", "java", "kt", "kts", "swift", "c", "cpp", "h", "hpp", "cs", "scala", "sql",
})

# Never fetched, even if someone adds them to an allowlist.
BINARY_EXTENSIONS = frozenset({
    "png", "jpg", "jpeg", "gif", "ico", "webp", "bmp", "svg",
    "pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx",
    "zip", "tar", "gz", "tgz", "bz2", "xz", "rar", "7z", "jar", "war",
    "exe", "dll", "so", "dylib", "bin", "wasm",
    "woff", "woff2", "ttf", "eot", "otf",
    "mp3", "mp4", "avi", "mov", "wav", "flac",
    "pyc", "pyo", "class", "o", "a",
    "lock",
})

MAX_CONCURRENCY_CEILING = 20


class ScanConfig(BaseModel):
    max_concurrency: int = Field(default=10, ge=1, le=MAX_CONCURRENCY_CEILING)
    batch_size: int = Field(default=20, ge=1)
    batch_pause: float = Field(default=0.5, ge=0)
    file_extension_allowlist: frozenset[str] = DEFAULT_EXTENSIONS
    max_files_per_scan: int = Field(default=500, ge=1)
    max_file_size: int = Field(default=1_048_576, ge=1)
    rate_limit_retries: int = Field(default=3, ge=0)
    rate_limit_backoff: float = Field(default=2.0, ge=0)
    rate_limit_max_wait: float = Field(default=60.0, ge=0)

    @field_validator("file_extension_allowlist", mode="before")
    @classmethod
    def _normalise_extensions(cls, value):
        return frozenset(ext.lower().lstrip(".") for ext in value)


@dataclass(frozen=True)
class Settings:
    api_url: str = "https://api.github.com"
    token: Optional[str] = None
    timeout: float = 15.0
    max_concurrency: int = 10
    log_level: str = "INFO"

    def scan_config(self, **overrides) -> ScanConfig:
        overrides.setdefault("max_concurrency", self.max_concurrency)
        return ScanConfig(**overrides)


def load_settings() -> Settings:
    """Read settings from the environment."""
    return Settings(
        api_url=os.getenv("GITHUB_API_URL", "https://api.github.com").rstrip("/"),
        token=os.getenv("GITHUB_TOKEN") or None,
        timeout=float(os.getenv("REPOGUARD_TIMEOUT", "15")),
        max_concurrency=min(int(os.getenv("REPOGUARD_MAX_CONCURRENCY", "10")), MAX_CONCURRENCY_CEILING),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
