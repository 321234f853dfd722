# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Configuration management for Kestrel."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from kestrel.config.timeouts import Timeouts
from kestrel.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


# =============================================================================
# CENTRALIZED PATH CONFIGURATION
# =============================================================================
# Project-local paths are stored in {project_root}/.kestrel/
# Global paths are stored in ~/.kestrel/
# =============================================================================

KESTREL_DIR_NAME = os.getenv("KESTREL_DIR_NAME", ".kestrel")

GLOBAL_KESTREL_DIR = Path.home() / KESTREL_DIR_NAME

# Extensions scanned for in user input when no config file overrides them
DEFAULT_DETECT_EXTENSIONS: List[str] = [
    "rs",
    "toml",
    "md",
    "json",
    "yaml",
    "yml",
    "ts",
    "js",
    "py",
    "go",
    "sh",
    "txt",
    "c",
    "cpp",
    "h",
    "java",
    "cs",
]

# 1 MiB
DEFAULT_MAX_FILE_SIZE = 1_048_576


class ProjectPaths:
    """Centralized path management for Kestrel.

    Directory structure:
        {project_root}/.kestrel/
        └── mcp.yaml             # Project MCP server configuration

        ~/.kestrel/
        ├── config.yaml          # Global settings (files.detect_extensions, ...)
        └── mcp.yaml             # Global MCP server configuration
    """

    def __init__(self, project_root: Optional[Path] = None):
        self._project_root = Path(project_root) if project_root else Path.cwd()

    @property
    def project_root(self) -> Path:
        return self._project_root

    @property
    def project_mcp_config(self) -> Path:
        """Get project-local MCP configuration file."""
        return self._project_root / KESTREL_DIR_NAME / "mcp.yaml"

    @property
    def global_config(self) -> Path:
        """Get global config.yaml path."""
        return GLOBAL_KESTREL_DIR / "config.yaml"

    @property
    def global_mcp_config(self) -> Path:
        """Get global MCP configuration file."""
        return GLOBAL_KESTREL_DIR / "mcp.yaml"

    def find_mcp_config(self) -> Optional[Path]:
        """Return the first MCP config that exists (project wins over global)."""
        for candidate in (self.project_mcp_config, self.global_mcp_config):
            if candidate.exists():
                return candidate
        return None


def normalize_extensions(exts: Optional[List[str]]) -> Optional[List[str]]:
    """Normalize a configured extension list.

    Returns None when nothing was configured. An explicit empty list disables
    path detection. Entries are lower-cased, must be ASCII alphanumeric, and
    are de-duplicated in order; a list with no valid entries falls back to the
    defaults.
    """
    if exts is None:
        return None
    if len(exts) == 0:
        return []

    seen = set()
    filtered: List[str] = []
    for ext in exts:
        lower = str(ext).strip().lower()
        if not lower:
            continue
        if not (lower.isascii() and lower.isalnum()):
            continue
        if lower not in seen:
            seen.add(lower)
            filtered.append(lower)

    return filtered or list(DEFAULT_DETECT_EXTENSIONS)


class Settings(BaseSettings):
    """Main application settings.

    Values come from (lowest to highest precedence) field defaults, the YAML
    config file, KESTREL_* environment variables, and CLI overrides passed to
    load_settings().
    """

    model_config = SettingsConfigDict(
        env_prefix="KESTREL_",
        env_file=".env" if not os.getenv("KESTREL_SKIP_ENV_FILE") else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Operating modes
    tool_only: bool = False  # Disable local writes; forward file writes to an MCP tool
    confirm_writes: bool = True  # Ask before overwriting an existing file
    preview_prompt: bool = False  # Print composed prompts before inference

    # Conversation loop
    max_iterations: int = Field(default=3, ge=1)
    turn_timeout: float = Field(default=Timeouts.TURN_DEFAULT, gt=0)
    tool_call_timeout: float = Field(default=Timeouts.TOOL_CALL, gt=0)

    # File handling
    max_file_size: int = Field(default=DEFAULT_MAX_FILE_SIZE, gt=0)
    detect_extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_DETECT_EXTENSIONS))

    # MCP
    mcp_config: Optional[Path] = None

    # Inference engine
    engine: str = "subprocess"  # "subprocess" or "ollama"
    engine_command: Optional[str] = None  # e.g. "llama-cli -m {model} --no-display-prompt -p"
    prompt_template: Optional[str] = None  # chat template containing "{prompt}"
    ollama_base_url: str = "http://localhost:11434"
    model: Optional[str] = None

    # Logging
    log_level: str = "INFO"

    @field_validator("detect_extensions", mode="before")
    @classmethod
    def _normalize_extensions(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = [part for part in value.split(",")]
        normalized = normalize_extensions(value)
        return value if normalized is None else normalized

    @field_validator("mcp_config")
    @classmethod
    def _expand_mcp_config(cls, value: Optional[Path]) -> Optional[Path]:
        return value.expanduser() if value is not None else None

    @field_validator("prompt_template")
    @classmethod
    def _check_template(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and "{prompt}" not in value:
            raise ValueError("prompt_template must contain '{prompt}'")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()


# config.yaml section -> {file key: Settings field}; None is the top level
_CONFIG_FILE_KEYS: Dict[Optional[str], Dict[str, str]] = {
    None: {"log_level": "log_level"},
    "files": {
        "detect_extensions": "detect_extensions",
        "max_file_size": "max_file_size",
    },
    "agent": {
        "tool_only": "tool_only",
        "confirm_writes": "confirm_writes",
        "max_iterations": "max_iterations",
        "turn_timeout": "turn_timeout",
        "tool_call_timeout": "tool_call_timeout",
    },
    "engine": {
        "name": "engine",
        "command": "engine_command",
        "prompt_template": "prompt_template",
        "model": "model",
        "ollama_base_url": "ollama_base_url",
    },
    "mcp": {"config": "mcp_config"},
}


def _read_config_file(path: Path) -> Dict[str, Any]:
    """Flatten the YAML config file into Settings field names."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse config file '{path}': {e} (falling back to defaults)")
        return {}
    except OSError as e:
        logger.debug(f"Could not read config file '{path}': {e} (using defaults)")
        return {}

    if not isinstance(data, dict):
        logger.warning(f"Config file '{path}' is not a mapping, ignoring it")
        return {}

    values: Dict[str, Any] = {}
    for section, keys in _CONFIG_FILE_KEYS.items():
        block = data if section is None else data.get(section)
        if not isinstance(block, dict):
            continue
        for file_key, field_name in keys.items():
            if block.get(file_key) is not None:
                values[field_name] = block[file_key]

    return values


def load_settings(config_path: Optional[Path] = None, **overrides: Any) -> Settings:
    """Load application settings.

    Args:
        config_path: YAML config file. Defaults to ~/.kestrel/config.yaml.
        **overrides: Values from the CLI layer. None values are ignored.

    Returns:
        Settings instance

    Raises:
        ConfigurationError: If the merged values fail validation
    """
    path = config_path or ProjectPaths().global_config
    values: Dict[str, Any] = {}
    if path.exists():
        values.update(_read_config_file(path))
        logger.debug(f"Loaded config file: {path}")

    # Environment variables beat the file, explicit CLI flags beat both
    env_keys = {
        name
        for name in Settings.model_fields
        if os.getenv(f"KESTREL_{name.upper()}") is not None
    }
    for key in env_keys:
        values.pop(key, None)
    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return Settings(**values)
    except ValueError as e:
        raise ConfigurationError(f"Invalid configuration: {e}", cause=e) from e
