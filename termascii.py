#!/usr/bin/env python3
import argparse
import os
import sys
import zlib

import humanize
import numpy as np
from PIL import Image

from asciiart import (
    CHAR_ASPECT,
    DEFAULT_WIDTH,
    RAMP_DEFAULT,
    ConfigurationError,
    as_pixel_buffer,
    render_rows,
    select_ramp,
)


INVERT_TOKENS = ("inv", "invert")

NATIVE_MODES = {"L", "LA", "RGB", "RGBA"}


class ImageLoadError(Exception):
    """ The image at `path` could not be opened or decoded. """

    def __init__(self, path, reason):
        super().__init__(f"Failed to load image '{path}': {reason}")
        self.path = path
        self.reason = reason


def rescale_to_uint8(arr, lo, hi):
    """ Linearly map [lo, hi] onto [0, 255]. A flat image (lo == hi) maps to black. """
    arr = np.asarray(arr, dtype=np.float64)
    if hi <= lo:
        return np.zeros(arr.shape, dtype=np.uint8)
    scaled = (arr - lo) * (255.0 / (hi - lo))
    return np.clip(np.rint(scaled), 0, 255).astype(np.uint8)


def image_to_array(img):
    """
    Convert a Pillow image to 8-bit samples with 1 to 4 channels.

    High bit depth grayscale is mapped as follows:
        I;16*  full 16-bit range, i.e. the high byte.
        I      treated as 16-bit when every sample lies in 0..65535 (how Pillow
               opens 16-bit PNGs), otherwise stretched over its own min..max.
        F      0..1 when every sample lies there, 0..255 when they fit that,
               otherwise stretched over its own min..max.
    """
    if img.mode in NATIVE_MODES:
        return np.asarray(img)

    if img.mode.startswith("I;16"):
        return (np.asarray(img).astype(np.int64) >> 8).astype(np.uint8)
    if img.mode in ("I", "F"):
        arr = np.asarray(img)
        lo, hi = float(arr.min()), float(arr.max())
        if img.mode == "I" and lo >= 0 and hi <= 65535:
            return (arr.astype(np.int64) >> 8).astype(np.uint8)
        if img.mode == "F" and lo >= 0 and hi <= 1.0:
            return rescale_to_uint8(arr, 0, 1.0)
        if img.mode == "F" and lo >= 0 and hi <= 255:
            return rescale_to_uint8(arr, 0, 255)
        return rescale_to_uint8(arr, lo, hi)
    if img.mode == "1":
        return np.asarray(img.convert("L"))
    if img.mode in ("P", "PA"):
        transparent = img.mode == "PA" or "transparency" in img.info
        return np.asarray(img.convert("RGBA" if transparent else "RGB"))
    return np.asarray(img.convert("RGB"))


def load_pixels(path):
    """ Decode the first frame of an image file into a read-only pixel buffer. """
    try:
        with Image.open(path) as img:
            img.load()
            arr = image_to_array(img)
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
        raise ImageLoadError(path, e) from e
    return as_pixel_buffer(arr)


def parse_width(value, default=DEFAULT_WIDTH):
    """ Lenient width parsing: anything that isn't a positive integer means `default`. """
    if value is None:
        return default
    try:
        width = int(value)
    except (TypeError, ValueError):
        return default
    return width if width > 0 else default


def show_image(
        pixels,
        width=DEFAULT_WIDTH,
        ramp=RAMP_DEFAULT,
        char_aspect=CHAR_ASPECT,
        progress=True,
        stats=False,
        out=None,
        err=None
    ):
    """ Stream the rendering of `pixels` to `out`, one line per output row. """
    out = out or sys.stdout
    err = err or sys.stderr

    total_byte_count = 0
    compressor = zlib.compressobj() if stats else None
    compressed_byte_count = 0

    for row in render_rows(pixels, width=width, ramp=ramp, char_aspect=char_aspect, progress=progress):
        line = row + "\n"
        out.write(line)
        if compressor is not None:
            data = line.encode("utf-8")
            total_byte_count += len(data)
            compressed_byte_count += len(compressor.compress(data))
    out.flush()

    if compressor is not None:
        compressed_byte_count += len(compressor.flush())
        print(f"Total bytes: {humanize.naturalsize(total_byte_count)}, "
              f"Compressed bytes: {humanize.naturalsize(compressed_byte_count)}", file=err)


class ArgumentParser(argparse.ArgumentParser):
    """ argparse with exit status 1 on bad arguments; 2 is kept for unreadable images. """

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"❌ Error: {message}\n")


def build_parser(prog=None):
    parser = ArgumentParser(
        prog=prog,
        description="Render an image in the terminal as monochrome ASCII art.",
        epilog="""\
EXAMPLES:
  termascii screen.png              # default width 120
  termascii photo.jpg 80            # 80 characters per line
  termascii photo.jpg 100 inv       # invert brightness mapping
  termascii screen.png 120 > out.txt
""",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("image", nargs="?", default=None, help="Path to a PNG/JPEG/BMP/GIF/TGA/WebP image")
    parser.add_argument("width", nargs="?", default=None,
                        help=f"Output width in characters (default: {DEFAULT_WIDTH})")
    parser.add_argument("mode", nargs="?", default=None, help="'inv' or 'invert' to invert the brightness mapping")
    parser.add_argument("-ac", "--ascii-chars", type=str, default=None,
                        help=f"Characters to use for rendering, Dark to Light (default: '{RAMP_DEFAULT}')")
    parser.add_argument("-ra", "--reverse-ascii", action="store_true", help="Use reverse ASCII characters (same as 'inv')")
    parser.add_argument("-r", "--ratio", type=float, default=CHAR_ASPECT,
                        help=f"Character height/width ratio (default: {CHAR_ASPECT})")
    parser.add_argument("-np", "--no-progress", action="store_true", help="Hide tqdm progress bar")
    parser.add_argument("--stats", action="store_true", help="Print output size (raw and compressed) to stderr")
    return parser


def main(argv=None):
    prog = os.path.basename(sys.argv[0]) if sys.argv and sys.argv[0] else "termascii"
    parser = build_parser(prog)
    # positionals may be mixed with options; unknown options and extra positionals are ignored
    args, _ = parser.parse_known_intermixed_args(argv)

    if not args.image:
        parser.print_usage(sys.stderr)
        print("❌ Error: missing image path", file=sys.stderr)
        return 1

    width = parse_width(args.width)
    invert = args.reverse_ascii or args.mode in INVERT_TOKENS

    try:
        ramp = select_ramp(invert=invert, chars=args.ascii_chars)
        pixels = load_pixels(args.image)
        show_image(
            pixels,
            width=width,
            ramp=ramp,
            char_aspect=args.ratio,
            progress=not args.no_progress,
            stats=args.stats,
        )
    except ConfigurationError as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return 1
    except ImageLoadError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2
    except BrokenPipeError:
        # reader went away (e.g. `| head`); keep the interpreter's final flush quiet
        try:
            devnull = os.open(os.devnull, os.O_WRONLY)
            os.dup2(devnull, sys.stdout.fileno())
        except (AttributeError, OSError, ValueError):
            pass
        return 0

    return 0


if __name__ == "__main__":
    sys.exit(main())
