"""Anti-aliasing tolerant pixel comparison of two PNG screenshots.

Colour distance is measured in YIQ space and pixels that look like
anti-aliased edges in either image are not counted as differences. The
whole comparison is vectorized with numpy; the anti-aliasing check only
looks at pixels that already exceed the colour threshold.
"""

import io
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from ..errors import DiffComputationError


# Maximum possible YIQ delta between two pixels
MAX_YIQ_DELTA = 35215.0

DIFF_COLOR = (255, 0, 0)
AA_COLOR = (255, 255, 0)
FADE_ALPHA = 0.1

# Neighbour offsets, x outer and y inner
_NEIGHBOURS = [(dx, dy) for dx in (-1, 0, 1) for dy in (-1, 0, 1) if (dx, dy) != (0, 0)]


@dataclass
class PixelDiffResult:
    """Outcome of comparing two images."""
    diff_pixels: int
    total_pixels: int
    diff_percentage: float
    baseline_dimensions: Tuple[int, int]
    current_dimensions: Tuple[int, int]
    antialiased_pixels: int = 0
    diff_image: Optional[bytes] = None

    @property
    def dimensions_match(self) -> bool:
        return self.baseline_dimensions == self.current_dimensions


def decode_png(data: bytes) -> np.ndarray:
    """Decode image bytes into an (h, w, 4) uint8 RGBA array.

    Raises:
        DiffComputationError: If the bytes are not a decodable image
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            return np.asarray(image.convert("RGBA"), dtype=np.uint8)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise DiffComputationError(f"Cannot decode image: {e}") from e


def encode_png(pixels: np.ndarray) -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(pixels.astype(np.uint8), mode="RGBA").save(buffer, format="PNG")
    return buffer.getvalue()


def _blend(rgba: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Blend RGBA pixels with a white background."""
    pixels = rgba.astype(np.float64)
    alpha = pixels[..., 3] / 255.0
    r = 255.0 + (pixels[..., 0] - 255.0) * alpha
    g = 255.0 + (pixels[..., 1] - 255.0) * alpha
    b = 255.0 + (pixels[..., 2] - 255.0) * alpha
    return r, g, b


def _rgb2y(r, g, b):
    return r * 0.29889531 + g * 0.58662247 + b * 0.11448223


def _rgb2i(r, g, b):
    return r * 0.59597799 - g * 0.27417610 - b * 0.32180189


def _rgb2q(r, g, b):
    return r * 0.21147017 - g * 0.52261711 + b * 0.31114694


def color_delta(first: np.ndarray, second: np.ndarray) -> np.ndarray:
    """Squared YIQ distance between corresponding pixels."""
    r1, g1, b1 = _blend(first)
    r2, g2, b2 = _blend(second)
    y = _rgb2y(r1, g1, b1) - _rgb2y(r2, g2, b2)
    i = _rgb2i(r1, g1, b1) - _rgb2i(r2, g2, b2)
    q = _rgb2q(r1, g1, b1) - _rgb2q(r2, g2, b2)
    return 0.5053 * y * y + 0.299 * i * i + 0.1957 * q * q


def _border_bonus(xs: np.ndarray, ys: np.ndarray, width: int, height: int) -> np.ndarray:
    on_border = (xs == 0) | (xs == width - 1) | (ys == 0) | (ys == height - 1)
    return on_border.astype(np.int32)


def _has_many_siblings(packed: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    """True where more than two neighbours equal the pixel exactly."""
    height, width = packed.shape
    zeroes = _border_bonus(xs, ys, width, height)
    center = packed[ys, xs]
    for dx, dy in _NEIGHBOURS:
        nx, ny = xs + dx, ys + dy
        valid = (nx >= 0) & (nx < width) & (ny >= 0) & (ny < height)
        same = np.zeros(len(xs), dtype=bool)
        same[valid] = packed[ny[valid], nx[valid]] == center[valid]
        zeroes += same
    return zeroes > 2


def _antialiased(
    brightness: np.ndarray,
    packed: np.ndarray,
    other_packed: np.ndarray,
    xs: np.ndarray,
    ys: np.ndarray
) -> np.ndarray:
    """Detect anti-aliased pixels at (xs, ys) of one image.

    A pixel is anti-aliased when it has at most two identical neighbours,
    both a darker and a brighter neighbour, and the darkest or brightest
    neighbour sits in a flat region in both images.
    """
    height, width = brightness.shape
    count = len(xs)
    zeroes = _border_bonus(xs, ys, width, height)
    rejected = np.zeros(count, dtype=bool)
    min_delta = np.zeros(count)
    max_delta = np.zeros(count)
    min_x, min_y = xs.copy(), ys.copy()
    max_x, max_y = xs.copy(), ys.copy()
    center = brightness[ys, xs]

    for dx, dy in _NEIGHBOURS:
        nx, ny = xs + dx, ys + dy
        active = (nx >= 0) & (nx < width) & (ny >= 0) & (ny < height) & ~rejected
        if not active.any():
            continue
        delta = np.zeros(count)
        delta[active] = center[active] - brightness[ny[active], nx[active]]

        is_zero = active & (delta == 0)
        zeroes += is_zero
        rejected |= is_zero & (zeroes > 2)

        darker = active & ~is_zero & (delta < min_delta)
        min_delta = np.where(darker, delta, min_delta)
        min_x = np.where(darker, nx, min_x)
        min_y = np.where(darker, ny, min_y)

        brighter = active & ~is_zero & ~darker & (delta > max_delta)
        max_delta = np.where(brighter, delta, max_delta)
        max_x = np.where(brighter, nx, max_x)
        max_y = np.where(brighter, ny, max_y)

    candidates = ~rejected & (min_delta != 0) & (max_delta != 0)
    result = np.zeros(count, dtype=bool)
    if not candidates.any():
        return result

    idx = np.nonzero(candidates)[0]
    dark_flat = (
        _has_many_siblings(packed, min_x[idx], min_y[idx])
        & _has_many_siblings(other_packed, min_x[idx], min_y[idx])
    )
    bright_flat = (
        _has_many_siblings(packed, max_x[idx], max_y[idx])
        & _has_many_siblings(other_packed, max_x[idx], max_y[idx])
    )
    result[idx] = dark_flat | bright_flat
    return result


def _pack(rgba: np.ndarray) -> np.ndarray:
    return np.ascontiguousarray(rgba).view(np.uint32)[..., 0]


def _faded(rgba: np.ndarray) -> np.ndarray:
    r, g, b = _blend(rgba)
    alpha = rgba[..., 3].astype(np.float64) / 255.0
    value = 255.0 + (_rgb2y(r, g, b) - 255.0) * FADE_ALPHA * alpha
    out = np.empty(rgba.shape, dtype=np.uint8)
    out[..., 0] = out[..., 1] = out[..., 2] = np.clip(value, 0, 255).astype(np.uint8)
    out[..., 3] = 255
    return out


def compare_images(
    baseline_png: bytes,
    current_png: bytes,
    threshold: float = 0.1,
    include_aa: bool = False,
    render_diff: bool = True
) -> PixelDiffResult:
    """Compare two PNG images pixel by pixel.

    Args:
        baseline_png: Reference image
        current_png: Image to compare
        threshold: Colour sensitivity in [0, 1]; smaller is stricter
        include_aa: Count anti-aliased pixels as differences
        render_diff: Produce a diff image (red for differences, yellow for
            anti-aliasing, faded grayscale elsewhere)

    Returns:
        Comparison result; mismatched dimensions give a 100% difference

    Raises:
        DiffComputationError: If either image cannot be decoded
    """
    baseline = decode_png(baseline_png)
    current = decode_png(current_png)

    baseline_dims = (baseline.shape[1], baseline.shape[0])
    current_dims = (current.shape[1], current.shape[0])

    if baseline_dims != current_dims:
        total = max(baseline_dims[0] * baseline_dims[1], current_dims[0] * current_dims[1])
        return PixelDiffResult(
            diff_pixels=total,
            total_pixels=total,
            diff_percentage=100.0,
            baseline_dimensions=baseline_dims,
            current_dimensions=current_dims,
        )

    height, width = baseline.shape[:2]
    total = width * height
    if total == 0:
        return PixelDiffResult(0, 0, 0.0, baseline_dims, current_dims)

    max_delta = MAX_YIQ_DELTA * threshold * threshold
    exceeds = color_delta(baseline, current) > max_delta

    antialiased = np.zeros((height, width), dtype=bool)
    if not include_aa and exceeds.any():
        ys, xs = np.nonzero(exceeds)
        packed_baseline = _pack(baseline)
        packed_current = _pack(current)
        br, bg, bb = _blend(baseline)
        cr, cg, cb = _blend(current)
        baseline_y = _rgb2y(br, bg, bb)
        current_y = _rgb2y(cr, cg, cb)
        aa = (
            _antialiased(baseline_y, packed_baseline, packed_current, xs, ys)
            | _antialiased(current_y, packed_current, packed_baseline, xs, ys)
        )
        antialiased[ys[aa], xs[aa]] = True

    different = exceeds & ~antialiased
    diff_pixels = int(different.sum())

    diff_image = None
    if render_diff:
        output = _faded(baseline)
        output[antialiased, :3] = AA_COLOR
        output[different, :3] = DIFF_COLOR
        diff_image = encode_png(output)

    return PixelDiffResult(
        diff_pixels=diff_pixels,
        total_pixels=total,
        diff_percentage=diff_pixels / total * 100,
        baseline_dimensions=baseline_dims,
        current_dimensions=current_dims,
        antialiased_pixels=int(antialiased.sum()),
        diff_image=diff_image,
    )
