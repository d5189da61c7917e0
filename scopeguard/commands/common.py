"""Shared wiring for command functions."""

from __future__ import annotations

import functools
from typing import Callable

from rich.console import Console

from ..catalog import Catalog, load_catalog
from ..config import Settings
from ..errors import ScopeguardError, StoreError
from ..store import DirectoryStore
from ..violations import ViolationLog


def open_store(settings: Settings) -> DirectoryStore:
    if not settings.store_path.is_dir():
        raise StoreError(f"Store not found: {settings.store_path}")
    return DirectoryStore(settings.store_path)


def open_catalog(settings: Settings) -> Catalog:
    return load_catalog(settings.catalog_path)


def open_log(settings: Settings) -> ViolationLog:
    return ViolationLog(settings.violation_log_path)


def reports_errors(fn: Callable[..., int]) -> Callable[..., int]:
    """Turn a ScopeguardError into a red message on stderr and exit code 1."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs) -> int:
        try:
            return fn(*args, **kwargs)
        except ScopeguardError as e:
            Console(stderr=True).print(f"{type(e).__name__}: {e}", style="bold red", highlight=False)
            return 1

    return wrapper
