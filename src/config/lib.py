"""Centralized environment configuration management for label-pipeline.

Provides a unified interface for all environment variables with:
- Single `get_environment()` function for all configuration
- Type-safe enum with metadata (default, type, description)
- Consistent resolution: override > environment > default

Example:
    >>> from src.config import EnvVar, get_environment
    >>>
    >>> # Get values with automatic type conversion
    >>> attempts = get_environment(EnvVar.RETRY_MAX_ATTEMPTS)  # Returns int
    >>> api_key = get_environment(EnvVar.OPENAI_API_KEY)  # Returns str | None
    >>>
    >>> # Override at runtime
    >>> attempts = get_environment(EnvVar.RETRY_MAX_ATTEMPTS, override=5)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, overload

# =============================================================================
# Environment Variable Configuration
# =============================================================================


@dataclass(frozen=True)
class EnvConfig:
    """Metadata for an environment variable.

    Attributes:
        name: Environment variable name (e.g., "RETRY_MAX_ATTEMPTS").
        default: Default value if not set in environment.
        var_type: Python type for value conversion (str, int, float, bool, Path).
        description: Human-readable description.
        category: Grouping category for documentation.
    """

    name: str
    default: Any
    var_type: type
    description: str = ""
    category: str = "general"


class EnvVar(Enum):
    """All environment variables used by label-pipeline.

    Each member contains an EnvConfig with name, default, type, and description.
    Use with `get_environment()` for type-safe access.

    Categories:
        - llm: LLM provider API keys and model selection
        - pipeline: Retry, concurrency and refinement limits
        - storage: Alias database and blob store locations
        - service: External render / image / vision services
    """

    # -------------------------------------------------------------------------
    # LLM Configuration
    # -------------------------------------------------------------------------
    OPENAI_API_KEY = EnvConfig(
        name="OPENAI_API_KEY",
        default=None,
        var_type=str,
        description="OpenAI API key for GPT, image and vision models",
        category="llm",
    )
    ANTHROPIC_API_KEY = EnvConfig(
        name="ANTHROPIC_API_KEY",
        default=None,
        var_type=str,
        description="Anthropic API key for Claude models",
        category="llm",
    )
    LLM_PROVIDER = EnvConfig(
        name="LLM_PROVIDER",
        default=None,
        var_type=str,
        description="Preferred LLM provider (openai, anthropic)",
        category="llm",
    )
    LABEL_LLM_MODEL = EnvConfig(
        name="LABEL_LLM_MODEL",
        default=None,
        var_type=str,
        description="Model name used for every text step (overrides defaults)",
        category="llm",
    )

    # -------------------------------------------------------------------------
    # Pipeline Behaviour
    # -------------------------------------------------------------------------
    LABEL_USE_MOCKS = EnvConfig(
        name="LABEL_USE_MOCKS",
        default=None,
        var_type=bool,
        description="Force mock adapters (None=auto, mocks when no API key)",
        category="pipeline",
    )
    IMAGE_MAX_CONCURRENCY = EnvConfig(
        name="IMAGE_MAX_CONCURRENCY",
        default=3,
        var_type=int,
        description="Maximum concurrent image generations per submission",
        category="pipeline",
    )
    REFINE_MAX_ITERATIONS = EnvConfig(
        name="REFINE_MAX_ITERATIONS",
        default=2,
        var_type=int,
        description="Maximum refinement loop iterations",
        category="pipeline",
    )
    RETRY_MAX_ATTEMPTS = EnvConfig(
        name="RETRY_MAX_ATTEMPTS",
        default=3,
        var_type=int,
        description="Attempts per external call before giving up",
        category="pipeline",
    )
    RETRY_BASE_DELAY = EnvConfig(
        name="RETRY_BASE_DELAY",
        default=1.0,
        var_type=float,
        description="Initial retry backoff delay in seconds",
        category="pipeline",
    )
    RETRY_MAX_DELAY = EnvConfig(
        name="RETRY_MAX_DELAY",
        default=10.0,
        var_type=float,
        description="Upper bound for retry backoff delay in seconds",
        category="pipeline",
    )

    # -------------------------------------------------------------------------
    # Storage Paths
    # -------------------------------------------------------------------------
    LABEL_DATA_DIR = EnvConfig(
        name="LABEL_DATA_DIR",
        default=None,  # Computed from repo root
        var_type=Path,
        description="Root directory for local pipeline data",
        category="storage",
    )
    LABEL_DB_PATH = EnvConfig(
        name="LABEL_DB_PATH",
        default=None,  # {data_dir}/labels.db
        var_type=Path,
        description="SQLite database for image aliases and step tracking",
        category="storage",
    )
    LABEL_BLOB_DIR = EnvConfig(
        name="LABEL_BLOB_DIR",
        default=None,  # {data_dir}/blobs
        var_type=Path,
        description="Directory backing the content-addressable blob store",
        category="storage",
    )
    LABEL_PUBLIC_BASE_URL = EnvConfig(
        name="LABEL_PUBLIC_BASE_URL",
        default=None,  # file:// URLs when unset
        var_type=str,
        description="Public base URL that serves the blob directory",
        category="storage",
    )

    # -------------------------------------------------------------------------
    # External Services
    # -------------------------------------------------------------------------
    RENDERER_URL = EnvConfig(
        name="RENDERER_URL",
        default=None,
        var_type=str,
        description="HTTP label render service URL (local preview when unset)",
        category="service",
    )
    OPENAI_IMAGE_MODEL = EnvConfig(
        name="OPENAI_IMAGE_MODEL",
        default="gpt-image-1",
        var_type=str,
        description="OpenAI model used for label artwork",
        category="service",
    )
    OPENAI_VISION_MODEL = EnvConfig(
        name="OPENAI_VISION_MODEL",
        default="gpt-4o",
        var_type=str,
        description="Vision-capable OpenAI model used for refinement",
        category="service",
    )


# =============================================================================
# Repository Root Detection
# =============================================================================


def _find_repo_root(start_path: Path | None = None) -> Path:
    """Find repository root by searching for .gitignore file.

    Args:
        start_path: Directory to start search from. Defaults to cwd.

    Returns:
        Path to repository root directory.

    Raises:
        RuntimeError: If .gitignore is not found.
    """
    current = (start_path or Path.cwd()).resolve()

    while True:
        if (current / ".gitignore").exists():
            return current

        parent = current.parent
        if parent == current:
            raise RuntimeError(
                f"Could not find repository root. No .gitignore found "
                f"starting from: {start_path or Path.cwd()}"
            )
        current = parent


# =============================================================================
# Type Conversion Helpers
# =============================================================================


def _parse_bool(value: str) -> bool | None:
    """Parse string to boolean.

    Recognizes: true/false, 1/0, yes/no (case-insensitive).
    Returns None for unrecognized values.
    """
    normalized = value.lower().strip()
    if normalized in ("true", "1", "yes"):
        return True
    if normalized in ("false", "0", "no"):
        return False
    return None


def _convert_value(value: str | None, var_type: type, default: Any) -> Any:
    """Convert string value to target type.

    Args:
        value: Raw string value from environment (or None).
        var_type: Target Python type.
        default: Default value if conversion fails or value is None.

    Returns:
        Converted value or default.
    """
    if value is None:
        return default

    if var_type is str:
        return value

    if var_type is int:
        try:
            return int(value)
        except ValueError:
            return default

    if var_type is float:
        try:
            return float(value)
        except ValueError:
            return default

    if var_type is bool:
        result = _parse_bool(value)
        return result if result is not None else default

    if var_type is Path:
        return Path(value)

    # Unknown type, return as-is
    return value


# =============================================================================
# Main Interface
# =============================================================================


@overload
def get_environment(env_var: EnvVar, override: int) -> int: ...
@overload
def get_environment(env_var: EnvVar, override: float) -> float: ...
@overload
def get_environment(env_var: EnvVar, override: str) -> str: ...
@overload
def get_environment(env_var: EnvVar, override: bool) -> bool: ...
@overload
def get_environment(env_var: EnvVar, override: Path) -> Path: ...
@overload
def get_environment(env_var: EnvVar, override: None = None) -> Any: ...


def get_environment(env_var: EnvVar, override: Any = None) -> Any:
    """Get environment variable value with type conversion.

    Resolution priority:
        1. Explicit override parameter (highest)
        2. Environment variable value
        3. Default from EnvConfig (lowest)

    Args:
        env_var: Environment variable enum member.
        override: Optional override value (bypasses env lookup).

    Returns:
        Value converted to the appropriate type.

    Example:
        >>> get_environment(EnvVar.IMAGE_MAX_CONCURRENCY)
        3
        >>> get_environment(EnvVar.IMAGE_MAX_CONCURRENCY, override=8)
        8
    """
    config: EnvConfig = env_var.value

    if override is not None:
        return override

    raw_value = os.environ.get(config.name)
    return _convert_value(raw_value, config.var_type, config.default)


def get_environment_info(env_var: EnvVar) -> EnvConfig:
    """Get metadata for an environment variable.

    Args:
        env_var: Environment variable enum member.

    Returns:
        EnvConfig with name, default, type, and description.
    """
    return env_var.value


# =============================================================================
# Convenience Functions
# =============================================================================


def get_data_dir(override: Path | str | None = None) -> Path:
    """Get the local data directory.

    Resolution: override > LABEL_DATA_DIR > {repo_root}/.data
    """
    if override is not None:
        return Path(override)

    env_path = get_environment(EnvVar.LABEL_DATA_DIR)
    if env_path:
        return env_path

    return _find_repo_root() / ".data"


def get_db_path(override: Path | str | None = None) -> Path:
    """Get the SQLite database path (override > LABEL_DB_PATH > data dir)."""
    if override is not None:
        return Path(override)
    return get_environment(EnvVar.LABEL_DB_PATH) or get_data_dir() / "labels.db"


def get_blob_dir(override: Path | str | None = None) -> Path:
    """Get the blob store directory (override > LABEL_BLOB_DIR > data dir)."""
    if override is not None:
        return Path(override)
    return get_environment(EnvVar.LABEL_BLOB_DIR) or get_data_dir() / "blobs"


def get_public_base_url(override: str | None = None) -> str | None:
    """Get the public base URL for stored blobs, without trailing slash."""
    url = get_environment(EnvVar.LABEL_PUBLIC_BASE_URL, override=override)
    return url.rstrip("/") if url else None


def get_available_llm_providers() -> list[str]:
    """Get list of LLM providers that have an API key configured.

    Returns:
        List of provider names (e.g., ["openai", "anthropic"]).
    """
    providers = []
    if get_environment(EnvVar.OPENAI_API_KEY):
        providers.append("openai")
    if get_environment(EnvVar.ANTHROPIC_API_KEY):
        providers.append("anthropic")
    return providers


def use_mocks(override: bool | None = None) -> bool:
    """Decide whether the pipeline should run against mock adapters.

    Resolution: override > LABEL_USE_MOCKS > True when no provider key is set.
    """
    flag = get_environment(EnvVar.LABEL_USE_MOCKS, override=override)
    if flag is not None:
        return flag
    return not get_available_llm_providers()


def list_environment_variables(category: str | None = None) -> list[EnvVar]:
    """List all environment variables, optionally filtered by category.

    Args:
        category: Filter by category (llm, pipeline, storage, service).
                 None returns all variables.

    Returns:
        List of EnvVar enum members.
    """
    if category is None:
        return list(EnvVar)

    return [var for var in EnvVar if var.value.category == category]


__all__ = [
    # Core types
    "EnvConfig",
    "EnvVar",
    # Main interface
    "get_environment",
    "get_environment_info",
    # Convenience functions
    "get_data_dir",
    "get_db_path",
    "get_blob_dir",
    "get_public_base_url",
    "get_available_llm_providers",
    "use_mocks",
    # Introspection
    "list_environment_variables",
]
