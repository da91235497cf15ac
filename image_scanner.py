# Find images embedded in a binary blob (such as a process dump or a disk
# image) and write each of them to its own file.
#
# GIFs are carved byte for byte; other formats are decoded and re-saved
# with Pillow.

import io
import sys
import logging
import argparse
from pathlib import Path
from PIL import Image

from gif_blocks import GifParseError
from gif_carver import carve_blocks

logger = logging.getLogger(__name__)

LOG_FORMAT = '[%(asctime)s] [%(levelname)s] %(message)s'

# (magic bytes, Pillow format, file extension, (offset, bytes) that must
# also match or None)
MAGIC_SIGNATURES = [
    (b'GIF8', 'GIF', 'gif', None),
    (bytes.fromhex('89 50 4E 47 0D 0A 1A 0A'), 'PNG', 'png', None),
    (bytes.fromhex('FF D8 FF'), 'JPEG', 'jpg', None),
    (b'BM', 'BMP', 'bmp', None),
    (b'RIFF', 'WEBP', 'webp', (8, b'WEBP')),
    (b'II*\x00', 'TIFF', 'tif', None),
    (b'MM\x00*', 'TIFF', 'tif', None),
    (b'\x00\x00\x01\x00', 'ICO', 'ico', None),
]
MAGIC_FIRST_BYTES = {magic[0] for magic, _, _, _ in MAGIC_SIGNATURES}

FORMAT_EXTENSIONS = {
    format_: extension for _, format_, extension, _ in MAGIC_SIGNATURES}

# no image in a dump is assumed to be bigger than this
MAX_IMAGE_SIZE = 50 * 1024 * 1024

# errors Pillow raises on data that only looks like an image
DECODE_ERRORS = (OSError, ValueError, Image.DecompressionBombError)


def fmt_exc(exc):
    return f'{type(exc).__name__}: "{exc}"'


def match_signature(view, offset):
    if view[offset] not in MAGIC_FIRST_BYTES:
        return

    for magic, format_, _, extra in MAGIC_SIGNATURES:
        if view[offset:offset + len(magic)] != magic:
            continue
        if extra is not None:
            extra_offset, extra_magic = extra
            start = offset + extra_offset
            if view[start:start + len(extra_magic)] != extra_magic:
                continue
        return format_


def find_candidates(host, start=0):
    # generate (offset, Pillow format) for every known signature
    view = memoryview(host).cast('B')
    for offset in range(start, len(view)):
        format_ = match_signature(view, offset)
        if format_ is not None:
            yield offset, format_


class ViewReader(io.RawIOBase):
    # seekable file object over a memoryview; only the bytes actually
    # read are copied

    def __init__(self, view):
        self.view = view
        self.pos = 0

    def readable(self):
        return True

    def seekable(self):
        return True

    def tell(self):
        return self.pos

    def seek(self, offset, whence=io.SEEK_SET):
        if whence == io.SEEK_CUR:
            offset += self.pos
        elif whence == io.SEEK_END:
            offset += len(self.view)
        if offset < 0:
            raise ValueError(f'negative seek position {offset}')
        self.pos = offset
        return self.pos

    def readinto(self, buffer):
        data = self.view[self.pos:self.pos + len(buffer)]
        buffer[:len(data)] = data
        self.pos += len(data)
        return len(data)


def reencode_image(view, offset, format_):
    # decode the image starting at offset and encode it again;
    # return the encoded bytes
    reader = ViewReader(view[offset:offset + MAX_IMAGE_SIZE])
    with Image.open(reader, formats=[format_]) as img:
        img.load()
        out = io.BytesIO()
        img.save(out, format=format_)
    return out.getvalue()


def write_bytes(path, data):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'wb') as f:
        f.write(data)


def write_span(path, host, start, end):
    write_bytes(path, memoryview(host).cast('B')[start:end])


def extract_images(host, output_folder, gif_only=False,
                   trust_declared_gce_size=False):
    view = memoryview(host).cast('B')
    output_folder = Path(output_folder)
    written = []
    offset = 0

    def next_path(format_):
        return output_folder / f'{len(written)}.{FORMAT_EXTENSIONS[format_]}'

    while offset < len(view):
        format_ = match_signature(view, offset)
        if format_ is None:
            offset += 1
            continue

        if format_ == 'GIF':
            try:
                begin, end, blocks = carve_blocks(
                    view, offset, trust_declared_gce_size)
            except GifParseError as e:
                logger.warning(f'GIF at {offset}: {fmt_exc(e)}')
                offset += 1
                continue

            path = next_path(format_)
            write_span(path, view, begin, end)
            written.append(path)
            logger.info(f'found: GIF at {begin}, {end - begin} bytes')
            for block in blocks:
                logger.debug(f'  {block.describe()}')

            # frames inside the GIF are not candidates of their own
            offset = end
            continue

        if not gif_only:
            try:
                data = reencode_image(view, offset, format_)
            except DECODE_ERRORS as e:
                # debug, not warning: two-byte signatures such as 'BM' match
                # all over a dump
                logger.debug(f'{format_} at {offset}: {fmt_exc(e)}')
            else:
                path = next_path(format_)
                write_bytes(path, data)
                written.append(path)
                logger.info(f'found: {format_} at {offset}')

        offset += 1

    logger.info(f'Extracted {len(written)} images')
    return written


def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(
        description='Extract images embedded in a binary file, such as a '
        'process dump or a disk image.'
    )
    parser.add_argument(
        '-g', '--gif-only', action='store_true',
        help='Only carve GIFs; skip other image formats.'
    )
    parser.add_argument(
        '--trust-gce-size', action='store_true',
        help='Use the size byte declared by Graphic Control Extensions '
        'instead of the standard 4 bytes.'
    )
    parser.add_argument(
        '-v', '--verbose', action='store_true',
        help='Print more info, including the block layout of each GIF.'
    )
    parser.add_argument(
        'input_file', help='File to scan.'
    )
    parser.add_argument(
        'output_folder', nargs='?',
        help='Folder to write images to (default: INPUT_FILE.out next to '
        'the input file).'
    )
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_arguments(argv)
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(format=LOG_FORMAT, level=level)

    path = Path(args.input_file)
    if args.output_folder:
        output_folder = Path(args.output_folder)
    else:
        output_folder = path.parent / (path.name + '.out')

    try:
        with open(path, 'rb') as f:
            data = f.read()
        extract_images(data, output_folder, args.gif_only,
                       args.trust_gce_size)
    except OSError as e:
        logger.error(fmt_exc(e))
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
