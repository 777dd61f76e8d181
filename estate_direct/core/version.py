from __future__ import annotations

import os
from functools import lru_cache
from importlib.metadata import PackageNotFoundError, version


def _resolve_package_version() -> str:
    try:
        return version("estate-direct")
    except PackageNotFoundError:
        return "0.0.0"


def _resolve_git_sha() -> str:
    return os.getenv("GIT_SHA") or os.getenv("RENDER_GIT_COMMIT") or "unknown"


@lru_cache
def get_version_info() -> dict[str, str]:
    return {
        "version": _resolve_package_version(),
        "gitSha": _resolve_git_sha(),
        "env": os.getenv("APP_ENV", os.getenv("ENV", "unknown")),
    }
