"""Process-wide configuration read from a YAML parameter file."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, ClassVar

import numpy as np
import yaml

logger = logging.getLogger(__name__)


class _Loader(yaml.SafeLoader):
    """Safe loader that also understands matrices written by OpenCV."""


def _opencv_matrix(loader: yaml.SafeLoader, node: yaml.Node) -> np.ndarray:
    spec = loader.construct_mapping(node, deep=True)
    data = np.asarray(spec["data"], dtype=float)
    return data.reshape(int(spec["rows"]), int(spec["cols"]))


_Loader.add_constructor("tag:yaml.org,2002:opencv-matrix", _opencv_matrix)


def _load(text: str) -> dict[str, Any]:
    # OpenCV writes a "%YAML:1.0" directive that standard YAML rejects.
    lines = [line for line in text.splitlines() if not line.startswith("%")]
    data = yaml.load("\n".join(lines), Loader=_Loader)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("parameter file must hold a mapping at the top level")
    return data


class Config:
    """Parameters shared by the whole program; set once, then read by key."""

    _values: ClassVar[dict[str, Any] | None] = None

    @classmethod
    def set_parameter_file(cls, filename) -> bool:
        """Load a parameter file; raises FileNotFoundError if it does not exist."""
        path = Path(filename)
        if not path.is_file():
            cls._values = None
            logger.error("parameter file %s does not exist.", filename)
            raise FileNotFoundError(f"parameter file {filename} does not exist.")
        cls._values = _load(path.read_text(encoding="utf-8"))
        return True

    @classmethod
    def get(cls, key: str, kind=None):
        """The value of ``key``, converted by ``kind`` when given."""
        if cls._values is None:
            raise RuntimeError("no parameter file has been loaded")
        try:
            value = cls._values[key]
        except KeyError:
            raise KeyError(f"parameter {key!r} is not set") from None
        return value if kind is None else kind(value)