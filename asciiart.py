import math
from typing import NamedTuple

import numpy as np
from tqdm import tqdm


DEFAULT_WIDTH = 120
CHAR_ASPECT = 0.55  # height/width of a terminal character cell

# Dark -> Light
RAMP_DEFAULT = "@%#*+=-:. "
RAMP_INVERT = RAMP_DEFAULT[::-1]

# ITU-R BT.709
LUMA_WEIGHTS = np.array([0.2126, 0.7152, 0.0722])


class ConfigurationError(ValueError):
    """ Raised for an unusable ramp or character aspect. """


class SourceRect(NamedTuple):
    """ Half-open source box [left, right) x [top, bottom), Pillow box order. """
    left: int
    top: int
    right: int
    bottom: int

    @property
    def area(self):
        return (self.right - self.left) * (self.bottom - self.top)


def _clamp(v, lo, hi):
    return lo if v < lo else (hi if v > hi else v)


def validate_ramp(ramp):
    if ramp is None or len(ramp) < 2:
        raise ConfigurationError(f"ASCII ramp needs at least 2 characters, got {ramp!r}")
    return ramp


def select_ramp(invert=False, chars=None):
    """
    Pick the glyph ramp used for rendering.

    Parameters:
        invert (bool): Reverse the ramp so bright areas get dense glyphs.
        chars (str|None): Custom ramp ordered dark to light. Defaults to RAMP_DEFAULT.

    Returns:
        str: The validated ramp, index 0 being the darkest glyph.
    """
    if chars is None:
        return RAMP_INVERT if invert else RAMP_DEFAULT
    validate_ramp(chars)
    return chars[::-1] if invert else chars


def plan_size(src_w, src_h, width, char_aspect=CHAR_ASPECT):
    """ Output grid (width, height) for a source image, correcting for tall character cells. """
    if src_w <= 0 or src_h <= 0:
        raise ValueError(f"Source dimensions must be positive, got {src_w}x{src_h}")
    if width <= 0:
        raise ValueError(f"Output width must be positive, got {width}")
    if not (char_aspect > 0 and math.isfinite(char_aspect)):
        raise ConfigurationError(f"Character aspect must be a positive finite number, got {char_aspect}")

    out_w = int(width)
    scaled_h = src_h * (out_w / src_w) * char_aspect
    if not math.isfinite(scaled_h):
        raise ConfigurationError(f"Output height overflows for aspect {char_aspect}")
    # round half away from zero; the product is never negative
    out_h = math.floor(scaled_h + 0.5)
    return out_w, max(1, out_h)


def source_rect(ox, oy, src_w, src_h, out_w, out_h):
    """ Source pixels covered by output cell (ox, oy). Neighbouring boxes may share an edge pixel. """
    left = (ox * src_w) // out_w
    right = -((-(ox + 1) * src_w) // out_w)
    top = (oy * src_h) // out_h
    bottom = -((-(oy + 1) * src_h) // out_h)
    return SourceRect(
        _clamp(left, 0, src_w),
        _clamp(top, 0, src_h),
        _clamp(right, 0, src_w),
        _clamp(bottom, 0, src_h),
    )


def as_pixel_buffer(arr):
    """
    Normalise decoded samples into a read-only (H, W, C) uint8 array.

    A 2-D array is taken as single-channel grayscale. Channel counts 1 and 2
    are grayscale (the second channel being alpha), 3 and 4 are RGB(A).
    """
    pixels = np.asarray(arr)
    if pixels.ndim == 2:
        pixels = pixels[:, :, np.newaxis]
    if pixels.ndim != 3:
        raise ValueError(f"Pixel buffer must be 2-D or 3-D, got shape {pixels.shape}")

    h, w, c = pixels.shape
    if h <= 0 or w <= 0:
        raise ValueError(f"Pixel buffer must not be empty, got {w}x{h}")
    if not 1 <= c <= 4:
        raise ValueError(f"Unsupported channel count: {c}")

    if pixels.dtype != np.uint8:
        pixels = np.clip(pixels, 0, 255).astype(np.uint8)
    else:
        pixels = pixels.view()
    pixels.setflags(write=False)
    return pixels


def region_luminance(pixels, rect):
    """ Average BT.709 luminance in [0, 1] over a source box. Empty boxes read as black. """
    block = pixels[rect.top:rect.bottom, rect.left:rect.right]
    if block.shape[0] == 0 or block.shape[1] == 0:
        return 0.0

    if pixels.shape[2] < 3:
        return float(block[..., 0].mean()) / 255.0
    return float((block[..., :3] @ LUMA_WEIGHTS).mean()) / 255.0


def luminance_to_char(lum, ramp):
    """ Convert a normalized luminance to a glyph, 0 -> ramp[0], 1 -> ramp[-1]. """
    last = len(ramp) - 1
    idx = math.floor(lum * last + 0.5)
    return ramp[_clamp(idx, 0, last)]


def render_rows(pixels, width=DEFAULT_WIDTH, ramp=RAMP_DEFAULT, char_aspect=CHAR_ASPECT, progress=False):
    """ Yield the rendering one row at a time, top to bottom, without line terminators. """
    validate_ramp(ramp)
    pixels = as_pixel_buffer(pixels)
    src_h, src_w = pixels.shape[:2]
    out_w, out_h = plan_size(src_w, src_h, width, char_aspect)

    rows = tqdm(range(out_h), desc="Rendering rows", unit="row", delay=2, leave=False, disable=not progress)
    for oy in rows:
        yield "".join(
            luminance_to_char(
                region_luminance(pixels, source_rect(ox, oy, src_w, src_h, out_w, out_h)),
                ramp,
            )
            for ox in range(out_w)
        )


def render_text(pixels, **kwargs):
    return "".join(row + "\n" for row in render_rows(pixels, **kwargs))
