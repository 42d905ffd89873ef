"""Bridge between PostgreSQL tables and entity graph streams."""

from .errors import (
    ConfigurationError,
    DatasetNotFound,
    DecodeError,
    InternalError,
    LayerError,
    NotSupported,
)
from .model import Continuation, Entity


def main() -> None:
    """Entrypoint proxy that defers importing the CLI until needed."""

    import sys

    from .__main__ import main as _cli_main

    sys.exit(_cli_main())


__all__ = [
    "ConfigurationError",
    "Continuation",
    "DatasetNotFound",
    "DecodeError",
    "Entity",
    "InternalError",
    "LayerError",
    "NotSupported",
    "main",
]
