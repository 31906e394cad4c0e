"""Component retrieval, ranking and assembly engine behind the build_tool call."""

from importlib import metadata


def get_version() -> str:
    try:
        return metadata.version("toolforge")
    except metadata.PackageNotFoundError:
        return "0.0.0"


__all__ = ["get_version"]
