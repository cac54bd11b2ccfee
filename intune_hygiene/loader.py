"""Read device identifier lists supplied by operators."""
from __future__ import annotations

from pathlib import Path
from typing import List, Union


class EmptyInputError(ValueError):
    """Raised when an identifier file contains nothing to process."""


def load_identifiers(path: Union[str, Path]) -> List[str]:
    """Return the de-duplicated identifiers listed in *path*.

    Lines are stripped; blank lines and ``#`` comments are ignored. The order
    of first appearance is preserved.
    """

    source = Path(path)
    if not source.is_file():
        raise FileNotFoundError(f"Input file not found: {source}")

    identifiers: List[str] = []
    with source.open("r", encoding="utf-8-sig") as fh:
        for line in fh:
            value = line.strip()
            if not value or value.startswith("#"):
                continue
            identifiers.append(value)

    unique = list(dict.fromkeys(identifiers))
    if not unique:
        raise EmptyInputError(f"No device identifiers found in {source}")
    return unique


__all__ = ["EmptyInputError", "load_identifiers"]
