"""Version information for TrackBack.

This module provides version and build information for the application.
"""

import importlib.metadata

__all__ = ["VERSION", "get_version_info", "format_version_string"]

# Version from pyproject.toml
try:
    VERSION = importlib.metadata.version("trackback-matcher")
except importlib.metadata.PackageNotFoundError:
    VERSION = "0.1.0-dev"


def get_version_info() -> dict[str, str]:
    """Get version information.

    Returns:
        Dictionary with version and status information
    """
    return {
        "version": VERSION,
        "status": "development" if "dev" in VERSION else "release",
    }


def format_version_string() -> str:
    """Format version information as a human-readable string."""
    info = get_version_info()
    version_str = f"TrackBack Matcher v{info['version']}"

    if info["status"] == "development":
        version_str += " (development)"

    return version_str
