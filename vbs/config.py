"""
VBS Configuration Management
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any

from dotenv import load_dotenv

from vbs.exceptions import VBSError


def _default_config_dir() -> str:
    return os.environ.get("VBS_HOME") or str(Path.home() / ".vbs")


def load_env_files(cwd: Optional[Path] = None) -> None:
    """Load .env files: working directory first, then the install location.

    python-dotenv never overrides a variable that is already set, so the
    first file to define a key wins over the later ones.
    """
    candidates = [
        Path(cwd or Path.cwd()) / ".env",
        Path(__file__).resolve().parent.parent / ".env",
    ]
    for candidate in candidates:
        if candidate.is_file():
            load_dotenv(candidate, override=False)
    # Default search (walks up from the calling frame)
    load_dotenv(override=False)


@dataclass
class VBSConfig:
    """Configuration for the VBS CLI"""

    # Provider settings
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    fast_model: str = "claude-haiku-4-5-20251001"
    reasoning_model: str = "claude-opus-4-5"

    # Per-model wall-clock bounds (seconds)
    fast_model_timeout: float = 180.0
    reasoning_model_timeout: float = 1800.0

    # Gateway retry policy
    max_truncation_retries: int = 2
    token_ceiling: int = 64000
    max_api_retries: int = 2
    retry_base_delay: float = 1.0
    retry_max_delay: float = 20.0

    # Build / launch / test timing
    build_fix_attempts: int = 5
    launch_settle_seconds: float = 2.5
    test_warmup_seconds: float = 1.5
    endpoint_timeout_seconds: float = 6.0
    endpoint_delay_seconds: float = 0.25

    # Fixer context caps (characters)
    fix_snapshot_chars: int = 14000
    fix_error_chars: int = 5000

    # Host settings
    server_ip: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_file: str = "vbs.log"
    debug: bool = False

    # Paths
    config_dir: str = field(default_factory=_default_config_dir)
    registry_file: str = "projects.json"

    def __post_init__(self):
        """Initialize paths and directories"""
        Path(self.config_dir).mkdir(parents=True, exist_ok=True)

        if not os.path.isabs(self.log_file):
            self.log_file = str(Path(self.config_dir) / self.log_file)
        if not os.path.isabs(self.registry_file):
            self.registry_file = str(Path(self.config_dir) / self.registry_file)

    @property
    def registry_path(self) -> Path:
        return Path(self.registry_file)

    def model_timeout(self, model: str) -> float:
        """Wall-clock bound for a single call to ``model``"""
        if model == self.reasoning_model:
            return self.reasoning_model_timeout
        return self.fast_model_timeout

    def load_from_file(self, config_path: str) -> None:
        """Load configuration from JSON file"""
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = json.load(f)
                for key, value in data.items():
                    if hasattr(self, key):
                        setattr(self, key, value)

    @classmethod
    def load_default(cls) -> "VBSConfig":
        """Load default configuration from user config directory"""
        load_env_files()

        config = cls()
        default_config_path = Path(config.config_dir) / "config.json"
        if default_config_path.exists():
            config.load_from_file(str(default_config_path))

        # Override with environment variables
        config._load_from_env()

        return config

    def _load_from_env(self) -> None:
        """Load configuration from environment variables"""
        env_mappings = {
            "ANTHROPIC_API_KEY": "api_key",
            "ANTHROPIC_BASE_URL": "base_url",
            "AI_MODEL_HAIKU": "fast_model",
            "AI_MODEL_OPUS": "reasoning_model",
            "VBS_FAST_TIMEOUT": ("fast_model_timeout", float),
            "VBS_REASONING_TIMEOUT": ("reasoning_model_timeout", float),
            "VBS_BUILD_FIX_ATTEMPTS": ("build_fix_attempts", int),
            "SERVER_IPV4": "server_ip",
            "VBS_LOG_LEVEL": "log_level",
        }

        for env_var, mapping in env_mappings.items():
            value = os.environ.get(env_var)
            if value:
                if isinstance(mapping, tuple):
                    attr, converter = mapping
                    try:
                        setattr(self, attr, converter(value))
                    except ValueError:
                        raise VBSError(
                            f"{env_var} must be a number, got {value!r}",
                            code="CONFIG_INVALID",
                            details={"variable": env_var},
                        )
                else:
                    setattr(self, mapping, value)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary, without the credential"""
        data = asdict(self)
        data["api_key"] = "[set]" if self.api_key else None
        return data
