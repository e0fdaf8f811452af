from importlib.metadata import PackageNotFoundError, version as _dist_version
import platform

from pulley.metric import build_info

try:
    __version__ = _dist_version("pulley")
except PackageNotFoundError:
    __version__ = "0.0.0"


def info() -> str:
    return f"pulley version {__version__} (python: {platform.python_version()})"


def register_build_info() -> None:
    build_info.info(
        {"version": __version__, "python_version": platform.python_version()}
    )
