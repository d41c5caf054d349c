"""
Crop geometry.

Maps a crop box drawn over a fitted preview onto pixel coordinates of the
media, supports corner dragging with an optional locked aspect ratio, and
rescales crops when the downloaded media has a different resolution than
the frame the crop was drawn against.

Display-space values are float Rects; media-space values are integer
CropRects. Every function here is total: degenerate sizes give back the
full bounds instead of raising.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from clips.service.constants import CROP_PADDING_RATIO, MIN_CROP_SIZE, TOUCH_SLOP


@dataclass(frozen=True)
class Rect:
    """Rectangle in display coordinates"""

    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self):
        return self.right - self.left

    @property
    def height(self):
        return self.bottom - self.top

    @property
    def center_x(self):
        return (self.left + self.right) / 2

    @property
    def center_y(self):
        return (self.top + self.bottom) / 2

    def contains(self, x, y):
        return self.left <= x <= self.right and self.top <= y <= self.bottom

    def offset_to(self, left, top):
        """Return the same-sized rect moved so its top-left corner is at (left, top)."""
        return Rect(left, top, left + self.width, top + self.height)


@dataclass(frozen=True)
class CropRect:
    """Crop rectangle in pixel coordinates of a reference frame"""

    x: int
    y: int
    width: int
    height: int

    @property
    def right(self):
        return self.x + self.width

    @property
    def bottom(self):
        return self.y + self.height

    def is_within(self, ref_width, ref_height):
        """
        Check the crop is usable against a frame of the given size.

        Positive, even dimensions that fit entirely inside the frame.
        """
        return (
            self.width > 0
            and self.height > 0
            and self.x >= 0
            and self.y >= 0
            and self.right <= ref_width
            and self.bottom <= ref_height
            and self.width % 2 == 0
            and self.height % 2 == 0
        )

    def as_tuple(self):
        return (self.x, self.y, self.width, self.height)


class AspectRatio(Enum):
    """Crop aspect ratio lock; FREE means unconstrained resizing"""

    FREE = None
    RATIO_16_9 = (16, 9)
    RATIO_4_3 = (4, 3)
    RATIO_1_1 = (1, 1)
    RATIO_9_16 = (9, 16)
    RATIO_3_4 = (3, 4)
    RATIO_4_5 = (4, 5)

    @property
    def is_fixed(self):
        return self.value is not None

    @property
    def aspect(self) -> Optional[float]:
        if self.value is None:
            return None
        width, height = self.value
        return width / height

    @property
    def label(self):
        if self.value is None:
            return 'free'
        return f'{self.value[0]}:{self.value[1]}'

    @classmethod
    def from_label(cls, label):
        """
        Look up a ratio by its label.

        Args:
            label: 'free' or 'W:H' (e.g. '16:9')

        Returns:
            AspectRatio

        Raises:
            ValueError: If the label is not one of the supported ratios
        """
        normalized = (label or '').strip().lower()
        for ratio in cls:
            if ratio.label == normalized:
                return ratio
        raise ValueError(f'Unsupported aspect ratio: {label}')


class Handle(Enum):
    """Part of the crop box a drag acts on"""

    NONE = 'none'
    TOP_LEFT = 'top_left'
    TOP_RIGHT = 'top_right'
    BOTTOM_LEFT = 'bottom_left'
    BOTTOM_RIGHT = 'bottom_right'
    CENTER = 'center'


_LEFT_HANDLES = (Handle.TOP_LEFT, Handle.BOTTOM_LEFT)
_TOP_HANDLES = (Handle.TOP_LEFT, Handle.TOP_RIGHT)
_CORNER_HANDLES = (Handle.TOP_LEFT, Handle.TOP_RIGHT, Handle.BOTTOM_LEFT, Handle.BOTTOM_RIGHT)


def _clamp(value, low, high):
    # low wins when the range is empty
    return max(low, min(value, high))


def even(value):
    """
    Round a pixel dimension down to an even number (most video encoders
    reject odd frame sizes).

    Raises:
        ValueError: If the dimension is negative
    """
    value = int(value)
    if value < 0:
        raise ValueError(f'Dimension must not be negative: {value}')
    return value & ~1


def oriented_size(size, rotation_degrees=0) -> Tuple[int, int]:
    """Return (width, height) as displayed, swapping for 90/270 degree rotation."""
    width, height = size
    if int(rotation_degrees) % 180 == 90:
        return height, width
    return width, height


def content_bounds(view_size, media_size=None) -> Rect:
    """
    Compute where fitted media actually appears inside a view.

    Media is scaled uniformly to fit and centered, leaving bars top/bottom
    (letterbox) when it is relatively wider than the view, or left/right
    (pillarbox) when it is relatively taller.

    Args:
        view_size: (width, height) of the display surface
        media_size: (width, height) of the media, or None if unknown

    Returns:
        Rect occupied by the media; the whole view if either size is degenerate
    """
    view_w, view_h = (float(v) for v in view_size)
    full_view = Rect(0.0, 0.0, max(view_w, 0.0), max(view_h, 0.0))
    if view_w <= 0 or view_h <= 0 or not media_size:
        return full_view

    media_w, media_h = media_size
    if media_w <= 0 or media_h <= 0:
        return full_view

    view_aspect = view_w / view_h
    media_aspect = media_w / media_h

    if media_aspect > view_aspect:
        # Wider than the view: bars top and bottom
        content_w = view_w
        content_h = view_w / media_aspect
    else:
        # Taller than the view: bars left and right
        content_h = view_h
        content_w = view_h * media_aspect

    offset_x = (view_w - content_w) / 2
    offset_y = (view_h - content_h) / 2
    return Rect(offset_x, offset_y, offset_x + content_w, offset_y + content_h)


def default_crop(bounds, ratio=AspectRatio.FREE) -> Rect:
    """
    Initial crop box for the given content bounds.

    The inset is 10% of the bounds width on every side. Free-form crops are
    the inset bounds; fixed ratios get the largest box of that ratio that
    fits inside the inset, centered in the bounds.
    """
    if bounds.width <= 0 or bounds.height <= 0:
        return bounds

    padding = bounds.width * CROP_PADDING_RATIO
    avail_w = bounds.width - padding * 2
    avail_h = bounds.height - padding * 2
    if avail_w <= 0 or avail_h <= 0:
        return bounds

    if not ratio.is_fixed:
        return Rect(
            bounds.left + padding, bounds.top + padding, bounds.right - padding, bounds.bottom - padding
        )

    aspect = ratio.aspect
    if avail_w / avail_h > aspect:
        rect_h = avail_h
        rect_w = rect_h * aspect
    else:
        rect_w = avail_w
        rect_h = rect_w / aspect

    cx = bounds.center_x
    cy = bounds.center_y
    return Rect(cx - rect_w / 2, cy - rect_h / 2, cx + rect_w / 2, cy + rect_h / 2)


def _translate_inside(rect, bounds):
    left = rect.left
    top = rect.top
    if left < bounds.left:
        left = bounds.left
    if top < bounds.top:
        top = bounds.top
    if left + rect.width > bounds.right:
        left = bounds.right - rect.width
    if top + rect.height > bounds.bottom:
        top = bounds.bottom - rect.height
    return rect.offset_to(left, top)


def move_crop(rect, bounds, dx, dy) -> Rect:
    """Drag the whole crop box, keeping it inside the bounds."""
    left = _clamp(rect.left + dx, bounds.left, bounds.right - rect.width)
    top = _clamp(rect.top + dy, bounds.top, bounds.bottom - rect.height)
    return rect.offset_to(left, top)


def resize_from_corner(
    rect, bounds, handle, dx, dy, ratio=AspectRatio.FREE, min_size=MIN_CROP_SIZE
) -> Rect:
    """
    Resize the crop box by dragging one of its corners.

    Free-form: the two edges meeting at the corner move independently, each
    clamped to the bounds and to min_size.

    Fixed ratio: the dominant drag axis (horizontal delta against the
    vertical delta scaled by the aspect ratio) sets a single growth amount.
    The new width is clamped to [min_size, bounds.width], the height follows
    from the ratio, the opposite corner stays put, and the result is
    translated (not shrunk) back inside the bounds. A resize whose height
    would leave [min_size, bounds.height] is ignored.

    Args:
        rect: Current crop box
        bounds: Content bounds the box must stay inside
        handle: Handle being dragged; CENTER moves the box, NONE is a no-op
        dx: Horizontal drag delta
        dy: Vertical drag delta
        ratio: AspectRatio lock
        min_size: Minimum width/height in display units

    Returns:
        New Rect
    """
    if handle == Handle.CENTER:
        return move_crop(rect, bounds, dx, dy)
    if handle not in _CORNER_HANDLES:
        return rect

    is_left = handle in _LEFT_HANDLES
    is_top = handle in _TOP_HANDLES

    if not ratio.is_fixed:
        left, top, right, bottom = rect.left, rect.top, rect.right, rect.bottom
        if is_left:
            left = _clamp(left + dx, bounds.left, right - min_size)
        else:
            right = _clamp(right + dx, left + min_size, bounds.right)
        if is_top:
            top = _clamp(top + dy, bounds.top, bottom - min_size)
        else:
            bottom = _clamp(bottom + dy, top + min_size, bounds.bottom)
        return Rect(left, top, right, bottom)

    aspect = ratio.aspect

    # Positive growth enlarges the box whichever corner is dragged
    growth_x = -dx if is_left else dx
    growth_y = -dy if is_top else dy
    growth = growth_x if abs(growth_x) >= abs(growth_y * aspect) else growth_y * aspect

    new_width = _clamp(rect.width + growth, min_size, bounds.width)
    new_height = new_width / aspect
    if new_height < min_size or new_height > bounds.height:
        return rect

    left = rect.right - new_width if is_left else rect.left
    top = rect.bottom - new_height if is_top else rect.top
    resized = Rect(left, top, left + new_width, top + new_height)
    return _translate_inside(resized, bounds)


def hit_test(rect, x, y, touch_slop=TOUCH_SLOP) -> Handle:
    """Work out which handle a pointer at (x, y) grabs."""
    corners = (
        (Handle.TOP_LEFT, rect.left, rect.top),
        (Handle.TOP_RIGHT, rect.right, rect.top),
        (Handle.BOTTOM_LEFT, rect.left, rect.bottom),
        (Handle.BOTTOM_RIGHT, rect.right, rect.bottom),
    )
    for handle, corner_x, corner_y in corners:
        if ((x - corner_x) ** 2 + (y - corner_y) ** 2) ** 0.5 < touch_slop:
            return handle
    if rect.contains(x, y):
        return Handle.CENTER
    return Handle.NONE


def to_media_coordinates(rect, bounds, media_size) -> CropRect:
    """
    Map a display-space crop box onto media pixels.

    Coordinates are taken relative to the content bounds, scaled linearly
    per axis and clamped to the media frame; width and height are rounded
    down to even values.

    Args:
        rect: Crop box in display coordinates
        bounds: Content bounds from content_bounds()
        media_size: (width, height) of the media

    Returns:
        CropRect in media pixels; the full frame if any size is degenerate
    """
    media_w, media_h = (int(v) for v in media_size) if media_size else (0, 0)
    if media_w <= 0 or media_h <= 0 or bounds.width <= 0 or bounds.height <= 0:
        return CropRect(0, 0, max(media_w, 0), max(media_h, 0))

    scale_x = media_w / bounds.width
    scale_y = media_h / bounds.height

    left = _clamp(int((rect.left - bounds.left) * scale_x), 0, media_w)
    top = _clamp(int((rect.top - bounds.top) * scale_y), 0, media_h)
    right = _clamp(int((rect.right - bounds.left) * scale_x), 0, media_w)
    bottom = _clamp(int((rect.bottom - bounds.top) * scale_y), 0, media_h)

    return CropRect(left, top, even(max(right - left, 0)), even(max(bottom - top, 0)))


def rescale_to_actual(crop, reference_size, actual_size, rotation_degrees=0) -> CropRect:
    """
    Rescale a crop authored against one frame size onto the real media.

    The extractor can serve a different resolution than it advertised, so
    the crop is recomputed once against the decoded size. Rotation of
    90/270 degrees swaps the actual width and height first.

    Args:
        crop: CropRect in reference-frame pixels
        reference_size: (width, height) the crop was drawn against
        actual_size: (width, height) as decoded from the downloaded file
        rotation_degrees: Rotation metadata of the downloaded file

    Returns:
        CropRect with even dimensions (at least 2) that fits inside the
        actual frame; the input crop if either size is degenerate
    """
    ref_w, ref_h = reference_size
    actual_w, actual_h = oriented_size(actual_size, rotation_degrees)
    if ref_w <= 0 or ref_h <= 0 or actual_w <= 0 or actual_h <= 0:
        return crop

    scale_x = actual_w / ref_w
    scale_y = actual_h / ref_h

    width = max(even(max(int(crop.width * scale_x), 0)), 2)
    height = max(even(max(int(crop.height * scale_y), 0)), 2)
    width = min(width, max(even(actual_w), 2))
    height = min(height, max(even(actual_h), 2))

    x = max(int(crop.x * scale_x), 0)
    y = max(int(crop.y * scale_y), 0)
    x = min(x, max(actual_w - width, 0))
    y = min(y, max(actual_h - height, 0))

    return CropRect(x, y, width, height)
