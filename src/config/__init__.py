"""Centralized configuration management for label-pipeline.

Provides unified access to all configuration via the `get_environment()` function.

Example:
    >>> from src.config import EnvVar, get_environment
    >>>
    >>> concurrency = get_environment(EnvVar.IMAGE_MAX_CONCURRENCY)  # int: 3
    >>> api_key = get_environment(EnvVar.OPENAI_API_KEY)  # str | None
    >>>
    >>> for var in list_environment_variables("storage"):
    ...     info = get_environment_info(var)
    ...     print(f"{info.name}: {info.description}")

Environment Variable Categories:
    llm: API keys and model selection (OpenAI, Anthropic)
    pipeline: Retry policy, image concurrency, refinement iterations
    storage: Alias database, blob directory, public URL
    service: Render service URL, image and vision models
"""

from .lib import (
    # Core types
    EnvConfig,
    EnvVar,
    # Main interface
    get_available_llm_providers,
    get_blob_dir,
    get_data_dir,
    get_db_path,
    get_environment,
    get_environment_info,
    get_public_base_url,
    # Introspection
    list_environment_variables,
    use_mocks,
)

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
