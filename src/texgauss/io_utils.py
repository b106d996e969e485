import json
import logging
from pathlib import Path

import cv2
import numpy as np
from PIL import Image

from .errors import InputError
from .memory import check_allocation, estimate_pipeline_bytes

logger = logging.getLogger(__name__)

IMG_SUFFIX = "gaussian"
LUT_SUFFIX = "lut"
DEFAULT_STEM = "Texture"

SINGLE_CHANNEL_MODES = ("1", "L", "I", "I;16", "I;16L", "I;16B", "F")


def pillow_channel_count(img: Image.Image) -> int:
    """Channels a Pillow image decodes to: L-like 1, LA 2, RGB 3, RGBA 4."""
    if img.mode in SINGLE_CHANNEL_MODES:
        return 1
    if img.mode == "LA":
        return 2
    if img.mode in ("RGBA", "PA"):
        return 4
    if img.mode == "P":
        return 4 if "transparency" in img.info else 3
    return 3


def normalize_pixels(data: np.ndarray) -> np.ndarray:
    """Convert decoded pixel data to float64, integers scaled to [0, 1]."""
    if np.issubdtype(data.dtype, np.integer):
        return data.astype(np.float64) / float(np.iinfo(data.dtype).max)
    return data.astype(np.float64)


def load_image(file_path) -> np.ndarray:
    """
    Decode an image file into a normalized float64 (H, W, C) buffer in RGB(A) order.

    Pillow decides the channel layout. OpenCV samples are used when OpenCV agrees
    on that layout, since it keeps 16-bit color and floating-point data; otherwise
    (grey+alpha, which OpenCV expands to BGRA) Pillow decodes. Files Pillow cannot
    open at all (e.g. float TIFF) are left to OpenCV.
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Image not found: {file_path}")

    channels = None
    try:
        with Image.open(path) as img:
            width, height = img.size
            channels = pillow_channel_count(img)
    except OSError:
        logger.debug(f"Pillow cannot read {path}, decoding with OpenCV")
    else:
        required = estimate_pipeline_bytes(width, height, channels)
        logger.info(f"Image Size: {width}x{height}x{channels} (~{required / 2**20:.2f} MB working set)")
        check_allocation(required)

    data = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if data is not None:
        if data.ndim == 2:
            data = data[:, :, np.newaxis]
        if channels is not None and data.shape[2] != channels:
            logger.debug(f"OpenCV decoded {data.shape[2]} channels, expected {channels}; using Pillow")
            data = None
        elif data.shape[2] == 3:
            data = cv2.cvtColor(data, cv2.COLOR_BGR2RGB)
        elif data.shape[2] == 4:
            data = cv2.cvtColor(data, cv2.COLOR_BGRA2RGBA)
    if data is None:
        data = _load_with_pillow(path)

    if data.ndim == 2:
        data = data[:, :, np.newaxis]
    return normalize_pixels(data)


def _load_with_pillow(path: Path) -> np.ndarray:
    try:
        with Image.open(path) as img:
            if img.mode == "1":
                img = img.convert("L")
            elif img.mode == "P":
                img = img.convert("RGBA" if "transparency" in img.info else "RGB")
            elif img.mode == "PA":
                img = img.convert("RGBA")
            elif img.mode not in SINGLE_CHANNEL_MODES + ("LA", "RGB", "RGBA"):
                img = img.convert("RGB")
            data = np.array(img)
    except OSError as e:
        raise InputError(f"Could not load image from {path}: {e}") from e

    if data.dtype == np.int32:
        # Pillow mode "I" holds 16-bit samples widened to int32.
        data = np.clip(data, 0, 65535).astype(np.uint16)
    return data


def write_image(file_path, image: np.ndarray):
    """Write a float (H, W, C) RGB(A) buffer as a float32 TIFF."""
    data = np.asarray(image, dtype=np.float32)
    if data.ndim == 3 and data.shape[2] == 1:
        data = data[:, :, 0]
    elif data.ndim == 3 and data.shape[2] == 2:
        data = np.concatenate([data, np.zeros_like(data[:, :, :1])], axis=2)
        logger.info(f"Padding 2-channel image with an empty third channel for {file_path}")
        data = cv2.cvtColor(data, cv2.COLOR_RGB2BGR)
    elif data.ndim == 3 and data.shape[2] == 3:
        data = cv2.cvtColor(data, cv2.COLOR_RGB2BGR)
    elif data.ndim == 3 and data.shape[2] == 4:
        data = cv2.cvtColor(data, cv2.COLOR_RGBA2BGRA)

    if not cv2.imwrite(str(file_path), data):
        raise OSError(f"Could not write image to {file_path}")


def write_matrix_blob(file_path, matrix: np.ndarray, inverse: np.ndarray):
    """Channel count followed by the forward and inverse matrices, little-endian float32."""
    n_channels = matrix.shape[0]
    blob = np.concatenate(
        [
            np.array([n_channels], dtype=np.float64),
            np.asarray(matrix, dtype=np.float64).reshape(-1),
            np.asarray(inverse, dtype=np.float64).reshape(-1),
        ]
    ).astype("<f4")
    blob.tofile(str(file_path))


def read_matrix_blob(file_path) -> tuple[np.ndarray, np.ndarray]:
    """Read back a blob written by :func:`write_matrix_blob`."""
    blob = np.fromfile(str(file_path), dtype="<f4").astype(np.float64)
    if blob.size == 0:
        raise ValueError(f"Empty decorrelation blob: {file_path}")
    n = int(blob[0])
    if blob.size != 1 + 2 * n * n:
        raise ValueError(f"Malformed decorrelation blob: {file_path}")
    matrix = blob[1 : 1 + n * n].reshape(n, n)
    inverse = blob[1 + n * n :].reshape(n, n)
    return matrix, inverse


def path_directory(path) -> Path:
    """
    Resolve the output directory argument.

    Existing directories, paths ending in a separator and paths without a file
    suffix name a directory (created later if missing); anything else is taken
    as a file path and its parent is used.
    """
    text = str(path)
    path = Path(path)
    if path.is_dir() or text.endswith(("/", "\\")) or not path.suffix:
        return path
    return path.parent


def default_prefixes(input_path) -> tuple[str, str]:
    """Image and LUT name prefixes derived from the input file name."""
    name = Path(input_path).name
    stem = name.split(".")[0] or DEFAULT_STEM
    return f"{stem}-{IMG_SUFFIX}", f"{stem}-{LUT_SUFFIX}"


def write_artifacts(result, out_dir, img_prefix: str, lut_prefix: str) -> dict[str, Path]:
    """
    Write the Gaussian image, inverse LUT image, matrix blob and metadata.

    Returns:
        Mapping of artifact kind to written path
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    paths = {
        "image": out_dir / f"{img_prefix}.tif",
        "lut": out_dir / f"{lut_prefix}.tif",
        "matrix": out_dir / f"{lut_prefix}-decorrelation.bin",
        "metadata": out_dir / f"{lut_prefix}.json",
    }

    write_image(paths["image"], result.gaussian_image)
    write_image(paths["lut"], result.inverse_lut_image())
    write_matrix_blob(paths["matrix"], result.transform.matrix, result.transform.inverse)
    with open(paths["metadata"], "w") as f:
        json.dump(result.metadata(), f, indent=2)

    for kind, path in paths.items():
        logger.info(f"Wrote {kind}: {path}")
    return paths
