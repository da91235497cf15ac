# Turn a GIF candidate offset inside a larger buffer (disk image, process
# dump, ...) into the exact byte range of the embedded GIF.

import logging

from gif_blocks import parse

logger = logging.getLogger(__name__)


def carve_blocks(host, start_offset, trust_declared_gce_size=False):
    # return (start, end, blocks); block offsets are relative to start.
    # GifParseError from the parser propagates unchanged
    view = memoryview(host).cast('B')
    if not 0 <= start_offset < len(view):
        raise ValueError(
            f'start offset {start_offset} outside buffer of {len(view)} bytes')

    blocks = parse(view[start_offset:], trust_declared_gce_size)
    end_offset = start_offset + blocks[-1].end
    logger.debug(f'carved GIF [{start_offset}, {end_offset}), '
                 f'{len(blocks)} blocks')
    return start_offset, end_offset, blocks


def carve(host, start_offset, trust_declared_gce_size=False):
    start, end, _ = carve_blocks(host, start_offset, trust_declared_gce_size)
    return start, end


def carve_bytes(host, start_offset, trust_declared_gce_size=False):
    start, end = carve(host, start_offset, trust_declared_gce_size)
    return bytes(memoryview(host).cast('B')[start:end])
