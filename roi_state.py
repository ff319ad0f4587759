"""
ROI model, view transform and session state for image-roi.
Nothing in here touches tkinter, so the whole interaction model can be
driven from tests.
"""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np

from image_ops import (
    TRANSFORMS,
    decode_image,
    encode_image,
    format_channel_dump,
    format_gray_dump,
    format_pixel_list,
    grayscale,
    list_folder_images,
    mime_type_for,
    read_image_bytes,
    sample_region,
    to_data_url,
)

logger = logging.getLogger(__name__)


MIN_SCALE = 0.2
MAX_SCALE = 5.0
ZOOM_STEP = 1.1
CLICK_ROI_SIZE = 20  # Box placed by a click without drag movement


def clamp(value, low, high):
    return max(low, min(high, value))


# ============================================================================
# Enums and Configuration
# ============================================================================

class PlacementMode(Enum):
    """How a left click on the image creates ROIs"""
    DRAW = "draw"             # Drag out a rectangle
    SUBSAMPLE = "subsample"   # Click places a fixed-size box


class SampleMode(Enum):
    """What subsample clicks print"""
    RGB = "rgb"
    GRAY = "gray"


@dataclass
class AppConfig:
    """Application configuration/preferences"""
    roi_color: str = "#FF0000"       # Outline of placed ROIs
    preview_color: str = "#3B82F6"   # Dashed outline while dragging
    default_roi_size: Tuple[int, int] = (16, 16)
    min_roi_size: int = 16
    max_roi_size: int = 512
    gray_dump_limit: int = 256


# ============================================================================
# Data Structures
# ============================================================================

@dataclass
class RegionOfInterest:
    """
    Axis-aligned ROI. All coordinates are in IMAGE space (image pixels).
    """
    x: int
    y: int
    width: int
    height: int
    region_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def as_rect(self) -> Tuple[int, int, int, int]:
        return (self.x, self.y, self.width, self.height)

    def to_bbox(self) -> Tuple[int, int, int, int]:
        """Returns (x1, y1, x2, y2), right/bottom exclusive"""
        return (self.x, self.y, self.x + self.width, self.y + self.height)

    def contains_point(self, px, py) -> bool:
        return (self.x <= px < self.x + self.width and
                self.y <= py < self.y + self.height)

    def to_canvas(self, view: "ViewTransform") -> Tuple[int, int, int, int]:
        """Canvas rectangle (x1, y1, x2, y2) rounded to whole pixels"""
        left, top = view.image_to_canvas(self.x, self.y)
        left, top = round(left), round(top)
        return (left, top,
                left + round(self.width * view.scale),
                top + round(self.height * view.scale))


@dataclass
class ViewTransform:
    """Zoom and pan state mapping image pixels to canvas pixels"""
    scale: float = 1.0
    offset: Tuple[float, float] = (0.0, 0.0)

    def canvas_to_image(self, canvas_x, canvas_y) -> Tuple[int, int]:
        # int() truncates toward zero, so points just left/above the image map to 0
        img_x = (canvas_x - self.offset[0]) / self.scale
        img_y = (canvas_y - self.offset[1]) / self.scale
        return (int(img_x), int(img_y))

    def canvas_to_image_float(self, canvas_x, canvas_y) -> Tuple[float, float]:
        return ((canvas_x - self.offset[0]) / self.scale,
                (canvas_y - self.offset[1]) / self.scale)

    def image_to_canvas(self, img_x, img_y) -> Tuple[float, float]:
        return (img_x * self.scale + self.offset[0],
                img_y * self.scale + self.offset[1])

    def set_scale(self, scale: float) -> float:
        self.scale = clamp(scale, MIN_SCALE, MAX_SCALE)
        return self.scale

    def zoom_in(self) -> float:
        return self.set_scale(self.scale * ZOOM_STEP)

    def zoom_out(self) -> float:
        return self.set_scale(self.scale / ZOOM_STEP)

    def zoom_wheel(self, delta) -> float:
        """Negative delta (wheel up) zooms in, anything else zooms out"""
        if delta < 0:
            return self.zoom_in()
        return self.zoom_out()

    def pan(self, dx, dy):
        self.offset = (self.offset[0] + dx, self.offset[1] + dy)

    def reset(self):
        self.scale = 1.0
        self.offset = (0.0, 0.0)


# ============================================================================
# Session State
# ============================================================================

class RoiSession:
    """
    Manages all state for one open image: pixels, ROIs, view and folder
    navigation. Single source of truth for the GUI.
    """
    def __init__(self, config: Optional[AppConfig] = None):
        self.config = config or AppConfig()

        self.image_path: Optional[Path] = None
        self.mime = "application/octet-stream"
        self.base_image: Optional[np.ndarray] = None     # Input of every transform
        self.display_image: Optional[np.ndarray] = None  # What the canvas shows
        self.data_url: Optional[str] = None
        self.last_transform: Optional[str] = None

        self.rois: List[RegionOfInterest] = []
        self.view = ViewTransform()
        self.placement_mode = PlacementMode.SUBSAMPLE
        self.sample_mode = SampleMode.RGB
        self.roi_width, self.roi_height = self.config.default_roi_size

        self.drag_start: Optional[Tuple[int, int]] = None
        self.drag_current: Optional[Tuple[int, int]] = None

        self.image_paths: List[Path] = []
        self.current_index = 0

    # ------------------------------------------------------------------
    # Image loading and navigation
    # ------------------------------------------------------------------

    @property
    def has_image(self) -> bool:
        return self.display_image is not None

    @property
    def image_size(self) -> Tuple[int, int]:
        """(width, height) of the displayed image, (0, 0) if none"""
        if self.display_image is None:
            return (0, 0)
        h, w = self.display_image.shape[:2]
        return (w, h)

    def load_image(self, path):
        """Decode path and make it the current image. Clears ROIs and zoom."""
        path = Path(path)
        data = read_image_bytes(path)
        image = decode_image(data)

        self.image_path = path
        self.mime = mime_type_for(path)
        self.base_image = image
        self.display_image = image
        self.data_url = to_data_url(data, self.mime)
        self.last_transform = None
        self.rois = []
        self.cancel_drag()
        self.view.reset()

        logger.info(f"Image loaded: {path.name} shape={image.shape}, mime={self.mime}")

    def open_image(self, path):
        """Load path and index the other images in its folder for Prev/Next"""
        path = Path(path)
        self.load_image(path)

        try:
            paths = list_folder_images(path.parent)
        except OSError as e:
            logger.warning(f"Could not list folder {path.parent}: {e}")
            paths = []

        names = [p.name for p in paths]
        if path.name not in names:
            paths = sorted(paths + [path])
            names = [p.name for p in paths]

        self.image_paths = paths
        self.current_index = names.index(path.name)
        logger.info(f"Folder has {len(paths)} image(s), current index {self.current_index}")

    def has_previous(self) -> bool:
        return self.current_index > 0

    def has_next(self) -> bool:
        return self.current_index + 1 < len(self.image_paths)

    def previous_image(self) -> bool:
        if not self.has_previous():
            return False
        self.load_image(self.image_paths[self.current_index - 1])
        self.current_index -= 1
        return True

    def next_image(self) -> bool:
        if not self.has_next():
            return False
        self.load_image(self.image_paths[self.current_index + 1])
        self.current_index += 1
        return True

    # ------------------------------------------------------------------
    # Transforms
    # ------------------------------------------------------------------

    def apply_transform(self, name: str) -> np.ndarray:
        """
        Apply a registered transform to the base image and display it.
        Only chaining transforms (rotate) replace the base image, so e.g.
        Blur twice shows the same result as Blur once.
        """
        if self.base_image is None:
            raise ValueError("No image loaded")
        transform = TRANSFORMS[name]

        result = transform.func(self.base_image)
        if transform.chains:
            self.base_image = result

        # Leaving a resize/crop result shows the base pixels again
        previous = TRANSFORMS.get(self.last_transform)
        restores_base = previous is not None and previous.changes_geometry and not previous.chains
        if (transform.changes_geometry or restores_base
                or result.shape[:2] != self.display_image.shape[:2]):
            # ROIs would no longer cover the pixels they were placed on
            self.rois = []
        self.display_image = result
        self.data_url = to_data_url(encode_image(result, ".png"), "image/png")
        self.last_transform = name

        logger.info(f"Applied {name}: shape={result.shape}")
        return result

    # ------------------------------------------------------------------
    # ROI editing
    # ------------------------------------------------------------------

    def contains_image_point(self, x, y) -> bool:
        w, h = self.image_size
        return 0 <= x < w and 0 <= y < h

    def _clamped_roi(self, x, y, width, height) -> RegionOfInterest:
        """ROI moved (and shrunk if needed) to lie fully inside the image"""
        img_w, img_h = self.image_size
        width = clamp(width, 1, img_w)
        height = clamp(height, 1, img_h)
        x = clamp(x, 0, img_w - width)
        y = clamp(y, 0, img_h - height)
        return RegionOfInterest(x=int(x), y=int(y), width=int(width), height=int(height))

    def set_roi_size(self, width, height) -> Tuple[int, int]:
        low, high = self.config.min_roi_size, self.config.max_roi_size
        self.roi_width = clamp(int(width), low, high)
        self.roi_height = clamp(int(height), low, high)
        return (self.roi_width, self.roi_height)

    def place_subsample(self, x, y) -> Optional[RegionOfInterest]:
        """Add a roi_width x roi_height box centred on (x, y)"""
        if not self.contains_image_point(x, y):
            return None
        w, h = self.roi_width, self.roi_height
        roi = self._clamped_roi(x - w // 2, y - h // 2, w, h)
        self.rois.append(roi)
        logger.info(f"ROI added at ({roi.x}, {roi.y}) size {roi.width}x{roi.height}")
        return roi

    def remove_roi_at(self, x, y) -> Optional[RegionOfInterest]:
        """Remove the first (oldest) ROI containing (x, y)"""
        for idx, roi in enumerate(self.rois):
            if roi.contains_point(x, y):
                del self.rois[idx]
                logger.info(f"ROI removed at ({x}, {y})")
                return roi
        return None

    def clear_rois(self):
        self.rois = []

    def begin_drag(self, x, y) -> bool:
        if not self.contains_image_point(x, y):
            return False
        self.drag_start = (x, y)
        self.drag_current = (x, y)
        return True

    def update_drag(self, x, y):
        if self.drag_start is not None:
            self.drag_current = (x, y)

    def cancel_drag(self):
        self.drag_start = None
        self.drag_current = None

    @property
    def is_dragging(self) -> bool:
        return self.drag_start is not None

    def drag_rect(self) -> Optional[Tuple[int, int, int, int]]:
        """Normalized (x, y, width, height) of the drag in progress"""
        if self.drag_start is None or self.drag_current is None:
            return None
        (x0, y0), (x1, y1) = self.drag_start, self.drag_current
        return (min(x0, x1), min(y0, y1), abs(x1 - x0), abs(y1 - y0))

    def end_drag(self, shift: bool = False) -> Optional[RegionOfInterest]:
        """
        Finish a drag. With shift held the ROI under the drag's top-left
        corner is deleted instead. An axis without movement gets a
        CLICK_ROI_SIZE extent centred on the click.
        """
        rect = self.drag_rect()
        start = self.drag_start
        self.cancel_drag()
        if rect is None:
            return None

        x, y, width, height = rect
        if shift:
            img_w, img_h = self.image_size
            self.remove_roi_at(clamp(x, 0, img_w - 1), clamp(y, 0, img_h - 1))
            return None

        if width == 0:
            x, width = start[0] - CLICK_ROI_SIZE // 2, CLICK_ROI_SIZE
        if height == 0:
            y, height = start[1] - CLICK_ROI_SIZE // 2, CLICK_ROI_SIZE

        roi = self._clamped_roi(x, y, width, height)
        self.rois.append(roi)
        logger.info(f"ROI: ({roi.x}, {roi.y}, {roi.width}, {roi.height})")
        return roi

    # ------------------------------------------------------------------
    # Pixel sampling
    # ------------------------------------------------------------------

    def describe_samples(self, roi: RegionOfInterest, point=None) -> str:
        """
        Text dump of the pixels under roi for the current modes.
        point is the clicked pixel, reported in the grayscale header
        (the ROI origin when not given).
        """
        if self.display_image is None:
            return ""
        image = self.display_image

        if self.placement_mode == PlacementMode.DRAW:
            return format_pixel_list(sample_region(image, roi.as_rect()), origin=(roi.x, roi.y))

        if self.sample_mode == SampleMode.GRAY or image.ndim == 2:
            patch = sample_region(grayscale(image), roi.as_rect())
            px, py = point if point is not None else (roi.x, roi.y)
            return (f"Grayscale ROI @ ({px},{py})\n" +
                    format_gray_dump(patch, self.config.gray_dump_limit))

        patch = sample_region(image, roi.as_rect())
        return format_channel_dump(patch, order="bgr")
