import cv2
import numpy as np
import pytest
import trimesh

from lithomesh import cli


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", lambda **kwargs: None)


@pytest.fixture
def image(tmp_path):
    path = tmp_path / "photo.png"
    img = np.tile(np.linspace(0, 255, 12).astype(np.uint8), (9, 1))
    cv2.imwrite(str(path), img)
    return str(path)


def test_writes_lithophane(tmp_path, image):
    output = tmp_path / "photo.stl"
    assert cli.main(["-i", image, "-o", str(output), "x", "y", "0"]) == 0
    mesh = trimesh.load(str(output), force="mesh")
    assert len(mesh.faces) > 0


def test_surface_only_with_options(tmp_path, image):
    output = tmp_path / "photo.ply"
    code = cli.main([
        "-i", image, "-o", str(output),
        "--precision", "single", "--step", "2", "--winding", "reversed", "--surface-only",
        "x", "y", "s * 3",
    ])
    assert code == 0
    mesh = trimesh.load(str(output), force="mesh", process=False)
    # columns 0,2,...,10,11 and rows 0,2,4,6,8
    assert len(mesh.vertices) == 7 * 5


def test_refuses_to_overwrite(tmp_path, image, capsys):
    output = tmp_path / "exists.stl"
    output.write_text("keep me")
    assert cli.main(["-i", image, "-o", str(output), "x", "y", "0"]) == 1
    assert output.read_text() == "keep me"
    assert "already exists" in capsys.readouterr().err


def test_missing_image(tmp_path, capsys):
    code = cli.main(["-i", str(tmp_path / "nope.png"), "-o", str(tmp_path / "out.stl"), "x", "y", "0"])
    assert code == 1
    assert "Error opening image file" in capsys.readouterr().err


def test_formula_error(tmp_path, image, capsys):
    output = tmp_path / "out.stl"
    assert cli.main(["-i", image, "-o", str(output), "x", "y", "sin(x"]) == 1
    err = capsys.readouterr().err
    assert "unmatched '('" in err
    assert not output.exists()


def test_bad_settings(tmp_path, image, capsys):
    output = tmp_path / "out.stl"
    assert cli.main(["-i", image, "-o", str(output), "--tolerance", "0", "x", "y", "0"]) == 1
    assert "Tolerance must be positive" in capsys.readouterr().err
