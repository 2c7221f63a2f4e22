"""
Configuration & Defaults
========================
Central place for default generation settings and the folders used by the
web app.

Exports:
    DEFAULT_TOLERANCE: Distance under which two vertices count as coincident.
    DEFAULT_WHITE_DEPTH, DEFAULT_BLACK_DEPTH: Lithophane depths for white and
        black pixels.
    PROCESSED_FOLDER: Where the web app writes generated meshes, overridable
        through the LITHOMESH_PROCESSED_FOLDER environment variable.
    GenerationSettings: Validated bundle of per-run options.
"""
from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from typing import Any, Mapping

from lithomesh.errors import InvalidParameterError
from lithomesh.mesh import Winding
from lithomesh.precision import Precision

# Absorbs float32 noise of formulas such as r*cos(pi/2) for radii up to ~100.
DEFAULT_TOLERANCE: float = 1e-4
DEFAULT_PRECISION: Precision = Precision.DOUBLE
DEFAULT_STEP: int = 1
DEFAULT_WINDING: Winding = Winding.OUTWARD
DEFAULT_WORKERS: int = 1

DEFAULT_WHITE_DEPTH: float = 0.5
DEFAULT_BLACK_DEPTH: float = 3.0

PROCESSED_FOLDER: str = os.environ.get("LITHOMESH_PROCESSED_FOLDER", os.path.join("static", "processed"))


@dataclass(frozen=True)
class GenerationSettings:
    precision: Precision = DEFAULT_PRECISION
    tolerance: float = DEFAULT_TOLERANCE
    step: int = DEFAULT_STEP
    winding: Winding = DEFAULT_WINDING
    workers: int = DEFAULT_WORKERS

    def __post_init__(self) -> None:
        object.__setattr__(self, "precision", Precision.from_name(self.precision))
        object.__setattr__(self, "winding", Winding.from_name(self.winding))
        if not self.tolerance > 0:
            raise InvalidParameterError(f"Tolerance must be positive, got {self.tolerance}")
        if self.step < 1:
            raise InvalidParameterError(f"Step must be at least 1, got {self.step}")
        if self.workers < 1:
            raise InvalidParameterError(f"Workers must be at least 1, got {self.workers}")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> GenerationSettings:
        """
        Build settings from loosely typed values (CLI arguments, form fields).

        Missing keys, None and empty strings fall back to the defaults.
        """
        converters = {
            "precision": str,
            "tolerance": float,
            "step": int,
            "winding": str,
            "workers": int,
        }
        kwargs = {}
        for key, convert in converters.items():
            raw = values.get(key)
            if raw is None or raw == "":
                continue
            try:
                kwargs[key] = convert(raw)
            except (TypeError, ValueError):
                raise InvalidParameterError(f"Invalid value for {key}: {raw!r}") from None
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["precision"] = self.precision.value
        data["winding"] = self.winding.value
        return data
