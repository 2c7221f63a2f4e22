import pytest

from lithomesh.config import DEFAULT_TOLERANCE, GenerationSettings
from lithomesh.errors import InvalidParameterError
from lithomesh.mesh import Winding
from lithomesh.precision import Precision


def test_defaults():
    settings = GenerationSettings()
    assert settings.precision is Precision.DOUBLE
    assert settings.tolerance == DEFAULT_TOLERANCE
    assert settings.step == 1
    assert settings.winding is Winding.OUTWARD
    assert settings.workers == 1


def test_from_mapping_converts_loose_values():
    settings = GenerationSettings.from_mapping({
        "precision": "f32",
        "tolerance": "1e-3",
        "step": "4",
        "winding": "grid",
        "workers": "",
        "unrelated": "ignored",
    })
    assert settings.precision is Precision.SINGLE
    assert settings.tolerance == 1e-3
    assert settings.step == 4
    assert settings.winding is Winding.GRID
    assert settings.workers == 1


@pytest.mark.parametrize("values", [
    {"precision": "half"},
    {"tolerance": "0"},
    {"tolerance": "abc"},
    {"step": "0"},
    {"step": "1.5"},
    {"winding": "sideways"},
    {"workers": "-2"},
])
def test_from_mapping_rejects_bad_values(values):
    with pytest.raises(InvalidParameterError):
        GenerationSettings.from_mapping(values)


def test_to_dict():
    settings = GenerationSettings(precision="single", winding="reversed")
    assert settings.to_dict() == {
        "precision": "single",
        "tolerance": DEFAULT_TOLERANCE,
        "step": 1,
        "winding": "reversed",
        "workers": 1,
    }
