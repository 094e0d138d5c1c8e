from __future__ import annotations

import importlib
from typing import Any, TypeVar

from ghleaderboard.adapters.storage.fallback import DegradingCacheStore
from ghleaderboard.config.models import RuntimeConfig
from ghleaderboard.core.errors import AdapterError

T = TypeVar("T")


def load_adapter(dotted_path: str) -> type[T]:
    try:
        module_path, class_name = dotted_path.split(":", 1)
        module = importlib.import_module(module_path)
        adapter_cls = getattr(module, class_name)
    except (ValueError, ImportError, AttributeError) as exc:
        raise AdapterError(f"Unable to load adapter: {dotted_path}") from exc
    return adapter_cls


def build_adapter(dotted_path: str, **kwargs: Any) -> Any:
    adapter_cls = load_adapter(dotted_path)
    try:
        return adapter_cls(**kwargs)
    except TypeError as exc:
        raise AdapterError(f"Unable to initialize adapter {dotted_path}: {exc}") from exc


def build_cache_store(runtime: RuntimeConfig) -> DegradingCacheStore:
    """Configured durable store, wrapped so a backend outage degrades to memory."""
    primary = build_adapter(runtime.storage_adapter, data_dir=runtime.data_dir)
    return DegradingCacheStore(primary)
