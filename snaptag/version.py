"""Version information for snaptag.

The version is read from the installed distribution, so pyproject.toml is
the only place it is written down.
"""

from importlib.metadata import PackageNotFoundError, version
from typing import Optional

DISTRIBUTION = "snaptag"
LOCAL_RUNTIME = "llama-cpp-python"
UNKNOWN_VERSION = "0.0.0+unknown"

try:
    __version__ = version(DISTRIBUTION)
except PackageNotFoundError:
    # Running from a source tree that was never installed
    __version__ = UNKNOWN_VERSION


def get_local_runtime_version() -> Optional[str]:
    """Get the installed llama-cpp-python version.

    Returns:
        Version string, or None when the ``local`` extra is not installed.
    """
    try:
        return version(LOCAL_RUNTIME)
    except PackageNotFoundError:
        return None


def get_version_string() -> str:
    """Get formatted version string with the local model runtime if present.

    Returns:
        Version string like "0.3.0" or "0.3.0 (llama-cpp-python 0.3.16)"
    """
    runtime = get_local_runtime_version()
    if runtime:
        return f"{__version__} ({LOCAL_RUNTIME} {runtime})"
    return __version__
