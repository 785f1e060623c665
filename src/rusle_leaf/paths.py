"""Input path resolution.

Rasters and region files named in a run configuration may be given
relative to the working directory or to the repository ``data`` directory
(``<repo>/data``, two parents above ``src/rusle_leaf``).
"""

from __future__ import annotations

from pathlib import Path
from typing import Union

PathLike = Union[str, Path]

_DATA_DIR = Path(__file__).resolve().parents[2] / "data"


def as_path(value: PathLike) -> Path:
    """Return ``value`` as a :class:`~pathlib.Path` instance."""

    return value if isinstance(value, Path) else Path(value)


def data_path(*parts: PathLike) -> Path:
    """Return a path beneath the repository ``data`` directory."""

    return _DATA_DIR.joinpath(*map(Path, parts))


def resolve_input_path(path: PathLike, *, description: str = "input") -> Path:
    """Resolve an input file, falling back to :func:`data_path`.

    Absolute paths and paths that exist relative to the working directory
    are returned unchanged.  Otherwise the path is looked up beneath the
    repository ``data`` directory.

    Raises
    ------
    FileNotFoundError
        If neither location holds the file.
    """

    candidate = as_path(path)
    if candidate.exists():
        return candidate

    data_candidate = data_path(candidate)
    if data_candidate.exists():
        return data_candidate

    raise FileNotFoundError(f"Expected {description} at '{candidate}' or '{data_candidate}'.")
