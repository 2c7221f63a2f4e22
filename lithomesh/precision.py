from __future__ import annotations

from enum import Enum

import numpy as np

from lithomesh.errors import InvalidParameterError


class Precision(Enum):
    """Floating point width used for one generation run."""
    SINGLE = "single"
    DOUBLE = "double"

    @property
    def dtype(self) -> type[np.floating]:
        return np.float32 if self is Precision.SINGLE else np.float64

    @property
    def eps(self) -> float:
        return float(np.finfo(self.dtype).eps)

    @classmethod
    def from_name(cls, name: str | Precision) -> Precision:
        if isinstance(name, Precision):
            return name
        aliases = {"f32": "single", "float32": "single", "f64": "double", "float64": "double"}
        key = aliases.get(name.strip().lower(), name.strip().lower())
        try:
            return cls(key)
        except ValueError:
            raise InvalidParameterError(f"Unknown precision '{name}' (expected single or double)") from None
