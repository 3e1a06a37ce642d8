"""
Version information for sealedswap.
"""
import importlib.metadata
import pathlib

import tomli

# Installed metadata first, then the source checkout's pyproject.toml
try:
    __version__ = importlib.metadata.version("sealedswap")
except importlib.metadata.PackageNotFoundError:
    try:
        path = pathlib.Path(__file__).parent.parent / "pyproject.toml"
        with open(path, "rb") as f:
            data = tomli.load(f)
        __version__ = data["project"]["version"]
    except (FileNotFoundError, KeyError, tomli.TOMLDecodeError):
        __version__ = "0.1.0"
