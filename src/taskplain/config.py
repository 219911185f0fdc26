"""Load optional project configuration from `.taskplain/config.yaml`.

Example::

    validate:
      concurrency: 8
      min_parallel: 25
      strict: false
    next:
      count: 1
      parallelize: 3
      executor: standard
      include_blocked: false

Command-line flags always win over values from the file.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .constants import CONFIG_FILE, DEFAULT_MIN_PARALLEL_FILES, DEFAULT_NEXT_COUNT, STATE_DIR_NAME
from .exceptions import ConfigError
from .io_utils import _load_data_with_error
from .task_engine.model import ExecutorTier


def load_taskplain_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional config file.

    Args:
        project_dir: Repository root directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    path = project_dir.resolve() / STATE_DIR_NAME / CONFIG_FILE
    if not path.exists():
        return {}, None
    data, err = _load_data_with_error(path, {})
    if err:
        return {}, err
    return data, None


def _get_block(config: dict[str, Any], key: str) -> dict[str, Any]:
    raw = config.get(key)
    return raw if isinstance(raw, dict) else {}


def _int_setting(block: dict[str, Any], key: str, minimum: int) -> Optional[int]:
    if key not in block or block[key] is None:
        return None
    value = block[key]
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ConfigError(f"{key} must be an integer >= {minimum}, got {value!r}")
    return value


def _bool_setting(block: dict[str, Any], key: str) -> Optional[bool]:
    if key not in block or block[key] is None:
        return None
    value = block[key]
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be true or false, got {value!r}")
    return value


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


@dataclass(frozen=True)
class ValidateSettings:
    concurrency: Optional[int] = None
    min_parallel: int = DEFAULT_MIN_PARALLEL_FILES
    strict: bool = False


@dataclass(frozen=True)
class NextSettings:
    count: int = DEFAULT_NEXT_COUNT
    parallelize: Optional[int] = None
    executor: Optional[ExecutorTier] = None
    include_blocked: bool = False


def resolve_validate_settings(
    config: dict[str, Any],
    *,
    concurrency: Optional[int] = None,
    min_parallel: Optional[int] = None,
    strict: Optional[bool] = None,
) -> ValidateSettings:
    """Merge the `validate` block with explicit overrides.

    Raises:
        ConfigError: If a configured value has the wrong type or range.
    """
    block = _get_block(config, "validate")
    return ValidateSettings(
        concurrency=_first(concurrency, _int_setting(block, "concurrency", 1)),
        min_parallel=_first(min_parallel, _int_setting(block, "min_parallel", 0), DEFAULT_MIN_PARALLEL_FILES),
        strict=bool(_first(strict, _bool_setting(block, "strict"), False)),
    )


def resolve_next_settings(
    config: dict[str, Any],
    *,
    count: Optional[int] = None,
    parallelize: Optional[int] = None,
    executor: Optional[str] = None,
    include_blocked: Optional[bool] = None,
) -> NextSettings:
    """Merge the `next` block with explicit overrides.

    Raises:
        ConfigError: If a configured value has the wrong type or range.
    """
    block = _get_block(config, "next")
    executor_value = _first(executor, block.get("executor"))
    tier: Optional[ExecutorTier] = None
    if executor_value is not None:
        try:
            tier = ExecutorTier(str(executor_value).strip().lower())
        except ValueError as exc:
            allowed = ", ".join(ExecutorTier.values())
            raise ConfigError(f"executor must be one of {allowed}, got {executor_value!r}") from exc
    return NextSettings(
        count=_first(count, _int_setting(block, "count", 1), DEFAULT_NEXT_COUNT),
        parallelize=_first(parallelize, _int_setting(block, "parallelize", 1)),
        executor=tier,
        include_blocked=bool(_first(include_blocked, _bool_setting(block, "include_blocked"), False)),
    )
