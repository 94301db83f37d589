"""
MMR package version.

``__version__`` is the base semantic version, overridable through ``MMR_VERSION``.
"""

from __future__ import annotations

import os

# Bump this when making a release of the MMR package.
_BASE_SEMVER = "0.1.0"

__version__ = os.environ.get("MMR_VERSION") or _BASE_SEMVER


def get_version() -> str:
    """Return the MMR package version string."""
    return __version__


__all__ = ["__version__", "get_version"]
