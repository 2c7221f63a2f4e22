import logging
import os
from uuid import uuid4

from flask import Flask, request, send_from_directory, jsonify
from werkzeug.utils import secure_filename

from lithomesh.config import DEFAULT_BLACK_DEPTH, DEFAULT_WHITE_DEPTH, PROCESSED_FOLDER, GenerationSettings
from lithomesh.errors import InvalidParameterError, LithomeshError
from lithomesh.logging_config import setup_logging
from lithomesh.pipeline import generate_lithophane, generate_mesh
from lithomesh.preprocess import decode_samples

logger = logging.getLogger("lithomesh.app")

app = Flask(__name__)

os.makedirs(PROCESSED_FOLDER, exist_ok=True)

EXPORT_FORMATS = ("stl", "obj", "ply")

# Largest grid /preview will triangulate; previews are meant to be coarse
MAX_PREVIEW_VERTICES = 250_000


@app.errorhandler(LithomeshError)
def handle_generation_error(e):
    logger.warning(f"Generation failed: {e}")
    return jsonify({"error": str(e), "kind": e.kind}), 400


def _form_float(name, default):
    raw = request.form.get(name, "")
    if raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise InvalidParameterError(f"Invalid value for {name}: {raw!r}") from None


@app.route('/generate', methods=['POST'])
def generate():
    if 'file' not in request.files or request.files['file'].filename == '':
        return jsonify({"error": "No image file selected.", "kind": "invalid_parameter"}), 400

    file = request.files['file']
    filename = secure_filename(file.filename) or "image"

    try:
        samples = decode_samples(
            file.read(),
            normalize_hist='normalization_enabled' in request.form,
            denoise='denoising_enabled' in request.form,
        )
    except ValueError as e:
        return jsonify({"error": str(e), "kind": "image"}), 400

    export_format = request.form.get('format', 'stl').lower()
    if export_format not in EXPORT_FORMATS:
        return jsonify({"error": f"Unsupported format '{export_format}'.", "kind": "invalid_parameter"}), 400

    settings = GenerationSettings.from_mapping(request.form)
    logger.info(f"Generating mesh for {filename} with {settings.to_dict()}")

    mesh = generate_lithophane(
        request.form.get('x', 'x'),
        request.form.get('y', 'y'),
        request.form.get('z', '0'),
        samples,
        settings,
        white_depth=_form_float('white_depth', DEFAULT_WHITE_DEPTH),
        black_depth=_form_float('black_depth', DEFAULT_BLACK_DEPTH),
        surface_only='surface_only' in request.form,
    )

    # One file per request, even for uploads that share a name
    mesh_filename = f"{os.path.splitext(filename)[0]}-{uuid4().hex[:8]}.{export_format}"
    mesh.export(os.path.join(PROCESSED_FOLDER, mesh_filename))

    return send_from_directory(os.path.abspath(PROCESSED_FOLDER), mesh_filename, as_attachment=True)


@app.route('/preview', methods=['POST'])
def preview():
    data = request.get_json(silent=True) or {}
    try:
        width = int(data.get('width', 0))
        height = int(data.get('height', 0))
    except (TypeError, ValueError):
        raise InvalidParameterError("width and height must be integers") from None

    settings = GenerationSettings.from_mapping(data)
    columns = (width + settings.step - 1) // settings.step + 1
    rows = (height + settings.step - 1) // settings.step + 1
    if columns * rows > MAX_PREVIEW_VERTICES:
        raise InvalidParameterError(
            f"Preview of {width}x{height} at step {settings.step} is too large; increase step"
        )

    mesh = generate_mesh(
        data.get('x', 'x'),
        data.get('y', 'y'),
        data.get('z', '0'),
        width,
        height,
        settings,
    )
    return jsonify({
        "vertices": mesh.vertices.tolist(),
        "faces": mesh.faces.tolist(),
        "poles": {edge.value: index for edge, index in mesh.poles.items()},
    }), 200


@app.route('/processed/<filename>')
def processed_file(filename):
    return send_from_directory(os.path.abspath(PROCESSED_FOLDER), filename)


if __name__ == '__main__':
    setup_logging()
    app.run(debug=True)
