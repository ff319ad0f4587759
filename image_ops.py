#!/usr/bin/env python3
"""
image-ops: OpenCV transforms, pixel sampling and data-URL helpers for image-roi.

Usage:
    python image_ops.py input.png --op blur [--op rotate_90] [--output result.png]
"""

import argparse
import base64
import binascii
import logging
import sys
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import cv2
import numpy as np
from PIL import Image

from roi_logging import log_fatal_error, log_opencv_diagnostics, setup_error_logging
from version import __version__


SUPPORTED_EXTENSIONS = ("png", "jpg", "jpeg", "webp")

MIME_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
}

# Pillow format names keyed by file suffix
SAVE_FORMATS = {
    ".jpg": "JPEG",
    ".jpeg": "JPEG",
    ".png": "PNG",
    ".webp": "WEBP",
}

DEFAULT_BLUR_KERNEL = (15, 15)
DEFAULT_RESIZE = (200, 200)
DEFAULT_CROP_RECT = (50, 50, 100, 100)  # x, y, width, height
CANNY_LOW = 100
CANNY_HIGH = 200
GRAY_DUMP_LIMIT = 256


# ============================================================================
# Files and Encoding
# ============================================================================

def is_supported_image(path) -> bool:
    """True if the file extension is one of the image types we open"""
    return Path(path).suffix.lower().lstrip(".") in SUPPORTED_EXTENSIONS


def mime_type_for(path) -> str:
    """MIME type used for data URLs, based on the file extension"""
    return MIME_TYPES.get(Path(path).suffix.lower().lstrip("."), "application/octet-stream")


def list_folder_images(folder) -> List[Path]:
    """Sorted list of supported images directly inside folder"""
    folder = Path(folder)
    return sorted(p for p in folder.iterdir() if p.is_file() and is_supported_image(p))


def read_image_bytes(path) -> bytes:
    return Path(path).read_bytes()


def decode_image(data: bytes, mode: str = "color") -> np.ndarray:
    """
    Decode encoded image bytes with OpenCV.

    Args:
        data: Encoded image (PNG, JPEG, WebP, ...)
        mode: "color" for 3-channel BGR, "gray" for single channel

    Returns:
        OpenCV image (numpy array)
    """
    flags = cv2.IMREAD_GRAYSCALE if mode == "gray" else cv2.IMREAD_COLOR
    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, flags) if buffer.size else None
    if image is None:
        raise ValueError(f"Could not decode image data ({len(data)} bytes)")
    return image


def encode_image(image: np.ndarray, ext: str = ".png") -> bytes:
    ok, buffer = cv2.imencode(ext, image)
    if not ok:
        raise ValueError(f"Could not encode image as {ext}")
    return buffer.tobytes()


def to_data_url(data: bytes, mime: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime};base64,{encoded}"


def from_data_url(url: str) -> Tuple[str, bytes]:
    """Split a base64 data URL into (mime, raw bytes)"""
    if not url.startswith("data:") or ";base64," not in url:
        raise ValueError("Not a base64 data URL")
    header, payload = url[len("data:"):].split(";base64,", 1)
    try:
        return header, base64.b64decode(payload, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e


def to_pil_image(image: np.ndarray) -> Image.Image:
    """Convert an OpenCV image (BGR or grayscale) to a PIL Image"""
    if image.ndim == 2:
        return Image.fromarray(image)
    return Image.fromarray(cv2.cvtColor(image, cv2.COLOR_BGR2RGB))


def save_image(image: np.ndarray, path, quality: int = 95) -> Path:
    """
    Save an OpenCV image using Pillow for better JPEG quality control.
    Format follows the file suffix; unknown suffixes are written as JPEG.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    format_name = SAVE_FORMATS.get(path.suffix.lower(), "JPEG")
    pil_image = to_pil_image(image)

    if format_name == "JPEG":
        pil_image.save(path, "JPEG", quality=quality)
    elif format_name == "PNG":
        pil_image.save(path, "PNG", optimize=True)
    else:
        pil_image.save(path, format_name, quality=quality)
    return path


# ============================================================================
# Transforms
# ============================================================================

def blur(image: np.ndarray, ksize: Tuple[int, int] = DEFAULT_BLUR_KERNEL) -> np.ndarray:
    """Normalized box filter"""
    return cv2.blur(image, ksize, anchor=(-1, -1), borderType=cv2.BORDER_DEFAULT)


def resize(image: np.ndarray, size: Tuple[int, int] = DEFAULT_RESIZE) -> np.ndarray:
    """Resize to exactly size (width, height) with bilinear interpolation"""
    return cv2.resize(image, size, interpolation=cv2.INTER_LINEAR)


def grayscale(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return image.copy()
    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)


def invert(image: np.ndarray) -> np.ndarray:
    return cv2.bitwise_not(image)


def edge_detect(image: np.ndarray, low: float = CANNY_LOW, high: float = CANNY_HIGH,
                aperture: int = 3) -> np.ndarray:
    """Canny edges of the grayscale image"""
    return cv2.Canny(grayscale(image), low, high, apertureSize=aperture, L2gradient=False)


def crop(image: np.ndarray, rect: Tuple[int, int, int, int] = DEFAULT_CROP_RECT) -> np.ndarray:
    """
    Crop (x, y, width, height) out of image.
    The rectangle must lie completely inside the image.
    """
    x, y, w, h = rect
    img_h, img_w = image.shape[:2]
    if w <= 0 or h <= 0 or x < 0 or y < 0 or x + w > img_w or y + h > img_h:
        raise ValueError(f"Crop rectangle {rect} is outside image bounds {img_w}x{img_h}")
    return image[y:y + h, x:x + w].copy()


def rotate_90(image: np.ndarray) -> np.ndarray:
    """Rotate 90 degrees clockwise"""
    return cv2.rotate(image, cv2.ROTATE_90_CLOCKWISE)


@dataclass(frozen=True)
class Transform:
    """A named toolbar/CLI transform"""
    label: str
    func: Callable[[np.ndarray], np.ndarray]
    chains: bool = False  # True if the result replaces the base image
    changes_geometry: bool = False  # True if pixels move (ROIs go stale)


TRANSFORMS = {
    "blur": Transform("Blur", blur),
    "resize": Transform("Resize 200x200", resize, changes_geometry=True),
    "grayscale": Transform("Grayscale", grayscale),
    "invert": Transform("Invert Colors", invert),
    "edge_detect": Transform("Edge Detect", edge_detect),
    "crop": Transform("Crop (ROI)", crop, changes_geometry=True),
    "rotate_90": Transform("Rotate 90°", rotate_90, chains=True, changes_geometry=True),
}


def apply_transform(name: str, image: np.ndarray) -> np.ndarray:
    """Run the registered transform called name (KeyError if unknown)"""
    return TRANSFORMS[name].func(image)


# ============================================================================
# Pixel Sampling
# ============================================================================

def sample_region(image: np.ndarray, rect: Tuple[int, int, int, int]) -> np.ndarray:
    """
    Pixels covered by rect (x, y, width, height), clipped to the image.
    Returns an empty array when rect does not overlap the image.
    """
    x, y, w, h = rect
    img_h, img_w = image.shape[:2]
    x0, y0 = max(0, x), max(0, y)
    x1, y1 = min(img_w, x + w), min(img_h, y + h)
    if x1 <= x0 or y1 <= y0:
        return image[0:0, 0:0]
    return image[y0:y1, x0:x1]


def format_gray_dump(patch: np.ndarray, limit: int = GRAY_DUMP_LIMIT) -> str:
    """Grayscale values, one image row per line, at most limit values"""
    if patch.ndim != 2:
        raise ValueError("Gray dump needs a single-channel patch")

    lines = []
    count = 0
    for row in patch:
        if count >= limit:
            break
        cells = []
        for value in row:
            if count >= limit:
                break
            cells.append(f"{int(value):3}, ")
            count += 1
        lines.append("".join(cells).rstrip())
    return "\n".join(lines)


def format_channel_dump(patch: np.ndarray, order: str = "rgb") -> str:
    """
    R, G and B tables followed by a combined [r, g, b] table.
    order names the channel order of patch ("rgb" or "bgr").
    """
    if patch.ndim != 3 or patch.shape[2] < 3:
        raise ValueError("Channel dump needs a 3-channel patch")

    indexes = {"R": 0, "G": 1, "B": 2} if order == "rgb" else {"R": 2, "G": 1, "B": 0}
    h, w = patch.shape[:2]
    sections = []

    for name in ("R", "G", "B"):
        channel = patch[:, :, indexes[name]]
        rows = ["".join(f"{int(v):4}" for v in row) for row in channel]
        sections.append(f"{name} Channel ({w}x{h})\n" + "\n".join(rows))

    combined = []
    for row in patch:
        combined.append(" ".join(
            f"[{int(p[indexes['R']]):3}, {int(p[indexes['G']]):3}, {int(p[indexes['B']]):3}]"
            for p in row
        ))
    sections.append(f"Combined RGB ({w}x{h})\n" + "\n".join(combined))

    return "\n".join(sections)


def format_pixel_list(patch: np.ndarray, origin: Tuple[int, int] = (0, 0)) -> str:
    """One line per pixel; 3-channel patches are read as BGR"""
    ox, oy = origin
    lines = []
    for row_idx, row in enumerate(patch):
        for col_idx, pixel in enumerate(row):
            x, y = ox + col_idx, oy + row_idx
            if patch.ndim == 2:
                lines.append(f"Pixel at ({x}, {y}): Gray={int(pixel)}")
            else:
                lines.append(f"Pixel at ({x}, {y}): R={int(pixel[2])} G={int(pixel[1])} B={int(pixel[0])}")
    return "\n".join(lines)


# ============================================================================
# Command Line
# ============================================================================

def default_output_path(input_path: Path, ops: List[str], output_dir="./output") -> Path:
    return Path(output_dir) / f"{input_path.stem}_{'_'.join(ops)}.png"


def process_image(input_path, ops: List[str], output_path: Optional[Path] = None,
                  data_url: bool = False) -> bool:
    """
    Apply ops in order (each on the previous result) and write the result.

    Args:
        input_path: Image file to read
        ops: Transform names from TRANSFORMS
        output_path: Destination file (default ./output/<stem>_<ops>.png)
        data_url: Print a PNG data URL to stdout instead of writing a file
    """
    logger = logging.getLogger(__name__)
    input_path = Path(input_path)

    if not input_path.exists():
        logger.error(f"Input file '{input_path}' not found")
        print(f"Error: Input file '{input_path}' not found.", file=sys.stderr)
        return False

    try:
        image = decode_image(read_image_bytes(input_path))
        logger.info(f"Image loaded: shape={image.shape}, dtype={image.dtype}")
    except (OSError, ValueError) as e:
        logger.error(f"Could not read image '{input_path}': {e}")
        print(f"Error: Could not read image '{input_path}': {e}", file=sys.stderr)
        return False

    for name in ops:
        try:
            image = apply_transform(name, image)
            logger.info(f"Applied {name}: shape={image.shape}")
        except ValueError as e:
            logger.error(f"Transform '{name}' failed: {e}")
            print(f"Error: {name} failed: {e}", file=sys.stderr)
            return False

    if data_url:
        print(to_data_url(encode_image(image, ".png"), "image/png"))
        return True

    output_path = Path(output_path) if output_path else default_output_path(input_path, ops)
    try:
        save_image(image, output_path)
    except OSError as e:
        logger.error(f"Could not save '{output_path}': {e}")
        logger.error(traceback.format_exc())
        print(f"Error: Could not save '{output_path}': {e}", file=sys.stderr)
        return False

    logger.info(f"Saved: {output_path}")
    print(f"Saved: {output_path}")
    return True


def build_parser():
    parser = argparse.ArgumentParser(
        description="Apply OpenCV transforms to an image.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python image_ops.py photo.jpg --op grayscale
  python image_ops.py photo.jpg --op rotate_90 --op edge_detect --output edges.png
  python image_ops.py photo.jpg --op blur --data-url
        """
    )
    parser.add_argument("input", help="Input image (png, jpg, jpeg, webp)")
    parser.add_argument(
        "--op",
        action="append",
        choices=list(TRANSFORMS),
        required=True,
        help="Transform to apply; repeat to chain several"
    )
    parser.add_argument("--output", help="Output file (default: ./output/<name>_<ops>.png)")
    parser.add_argument("--data-url", action="store_true",
                        help="Print the result as a PNG data URL instead of saving")
    parser.add_argument("--debug", action="store_true",
                        help="Enable debug logging with OpenCV diagnostics")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv=None):
    logger = setup_error_logging("image-ops")
    args = build_parser().parse_args(argv)

    try:
        if args.debug:
            logger.setLevel(logging.DEBUG)
            log_opencv_diagnostics(logger)

        logger.info(f"Starting image-ops: {args.input} ops={args.op}")
        success = process_image(args.input, args.op, args.output, args.data_url)
        sys.exit(0 if success else 1)

    except Exception as e:
        log_fatal_error(logger, e, traceback.format_exc())
        print(f"\nFATAL ERROR: {e}", file=sys.stderr)
        print("Error details have been logged. Please check the log file.", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
