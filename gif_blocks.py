# Walk the block structure of a GIF stream and report where each block
# starts and how long it is. Pixel data is never decoded.
# See https://www.w3.org/Graphics/GIF/spec-gif89a.txt

import enum
from collections import namedtuple

GIF_MAGIC = b'GIF8'

HEADER_LEN = 6
LSD_LEN = 7
LSD_PACKED_OFFSET = 4
IMAGE_DESCRIPTOR_LEN = 10
IMAGE_DESCRIPTOR_PACKED_OFFSET = 9
LZW_MIN_CODE_SIZE_LEN = 1
TRAILER_LEN = 1

# introducer + label + block size byte
EXTENSION_PREFIX_LEN = 3
GRAPHIC_CONTROL_DATA_LEN = 4

EXTENSION_INTRODUCER = 0x21  # '!'
IMAGE_SEPARATOR = 0x2C  # ','
TRAILER_BYTE = 0x3B  # ';'
BLOCK_TERMINATOR = 0x00

COLOR_TABLE_FLAG = 0x80
COLOR_TABLE_SIZE_MASK = 0x07


class BlockKind(enum.Enum):
    HEADER = 'Header'
    LOGICAL_SCREEN_DESCRIPTOR = 'Logical Screen Descriptor'
    COLOR_TABLE = 'Color Table'
    EXTENSION = 'Extension'
    IMAGE_DESCRIPTOR = 'Image Descriptor'
    IMAGE_DATA = 'Image Data'
    TRAILER = 'Trailer'


class ExtensionKind(enum.Enum):
    # value = extension label byte
    GRAPHIC_CONTROL = 0xF9
    COMMENT = 0xFE
    PLAIN_TEXT = 0x01
    APPLICATION = 0xFF


# offset of the sub-block chain from the introducer, for the extensions
# that carry one
EXTENSION_CHAIN_OFFSETS = {
    ExtensionKind.COMMENT: 2,
    ExtensionKind.PLAIN_TEXT: EXTENSION_PREFIX_LEN + 12,
    ExtensionKind.APPLICATION: EXTENSION_PREFIX_LEN + 11,  # identifier + auth code
}


class ErrorKind(enum.Enum):
    HEADER_INVALID = 'invalid GIF header'
    UNEXPECTED_END_OF_DATA = 'unexpected end of data'
    INVALID_BLOCK_MARKER = 'invalid block marker'
    INVALID_EXTENSION_TYPE = 'invalid extension type'
    INVALID_EXTENSION_TERMINATOR = 'invalid extension terminator'
    INVALID_IMAGE_DESCRIPTOR_MARKER = 'invalid image descriptor marker'
    INVALID_IMAGE_DATA_TERMINATOR = 'invalid image data terminator'
    INVALID_TRAILER_BYTE = 'invalid trailer byte'


class GifParseError(Exception):
    """Structural error in a GIF stream.

    `offset` is relative to the start of the parsed view.
    """

    def __init__(self, kind, offset):
        super().__init__(f'{kind.value} at offset {offset}')
        self.kind = kind
        self.offset = offset


class Block(namedtuple('Block', 'offset length kind extension')):
    __slots__ = ()

    def __new__(cls, offset, length, kind, extension=None):
        return super().__new__(cls, offset, length, kind, extension)

    @property
    def end(self):
        return self.offset + self.length

    def describe(self):
        name = self.kind.value
        if self.extension is not None:
            name += f' ({self.extension.name.replace("_", " ").title()})'
        return f'{name}: offset {self.offset}, {self.length} bytes'


class ByteView:
    """Read-only, bounds-checked window over a bytes-like object."""

    def __init__(self, data):
        self.data = memoryview(data).cast('B').toreadonly()

    def __len__(self):
        return len(self.data)

    def byte_at(self, offset):
        if offset >= len(self.data):
            raise GifParseError(
                ErrorKind.UNEXPECTED_END_OF_DATA, len(self.data))
        return self.data[offset]

    def require(self, offset, length):
        # the whole range [offset, offset + length) must be readable
        if offset + length > len(self.data):
            raise GifParseError(
                ErrorKind.UNEXPECTED_END_OF_DATA, len(self.data))

    def startswith(self, prefix):
        return self.data[:len(prefix)] == prefix


def has_color_table(packed):
    return bool(packed & COLOR_TABLE_FLAG)


def color_table_length(packed):
    # 3 bytes per color, 2^(n+1) colors
    return 3 * (2 << (packed & COLOR_TABLE_SIZE_MASK))


def sub_block_chain_length(view, offset):
    """Length of the sub-block chain starting at `offset`.

    Each sub-block is a length byte followed by that many data bytes; a
    zero length byte ends the chain. The terminator is not counted. The
    caller must make sure `offset` really is the start of a chain.
    """
    if not isinstance(view, ByteView):
        view = ByteView(view)

    total = 0
    size = view.byte_at(offset)
    while size:
        total += 1 + size
        size = view.byte_at(offset + total)
    return total


class BlockParser:
    def __init__(self, data, trust_declared_gce_size=False):
        self.view = ByteView(data)
        self.trust_declared_gce_size = trust_declared_gce_size
        self.cursor = 0
        self.blocks = []

    def emit(self, length, kind, extension=None):
        self.view.require(self.cursor, length)
        block = Block(self.cursor, length, kind, extension)
        self.blocks.append(block)
        self.cursor += length
        return block

    def expect_terminator(self, error_kind):
        # the terminator is left under the cursor; the body loop skips it
        if self.view.byte_at(self.cursor) != BLOCK_TERMINATOR:
            raise GifParseError(error_kind, self.cursor)

    def parse(self):
        self.parse_header()
        lsd = self.parse_logical_screen_descriptor()
        self.parse_optional_color_table(lsd.offset + LSD_PACKED_OFFSET)

        while True:
            marker = self.view.byte_at(self.cursor)
            if marker == EXTENSION_INTRODUCER:
                self.parse_extension()
            elif marker == IMAGE_SEPARATOR:
                self.parse_image()
            elif marker == TRAILER_BYTE:
                self.parse_trailer()
                return self.blocks
            elif marker == BLOCK_TERMINATOR:
                # stray padding between blocks
                self.cursor += 1
            else:
                raise GifParseError(
                    ErrorKind.INVALID_BLOCK_MARKER, self.cursor)

    def parse_header(self):
        # version suffix ("87a", "89a", ...) is not checked
        if not self.view.startswith(GIF_MAGIC):
            raise GifParseError(ErrorKind.HEADER_INVALID, self.cursor)
        return self.emit(HEADER_LEN, BlockKind.HEADER)

    def parse_logical_screen_descriptor(self):
        return self.emit(LSD_LEN, BlockKind.LOGICAL_SCREEN_DESCRIPTOR)

    def parse_optional_color_table(self, packed_offset):
        packed = self.view.byte_at(packed_offset)
        if has_color_table(packed):
            return self.emit(color_table_length(packed), BlockKind.COLOR_TABLE)

    def parse_extension(self):
        start = self.cursor
        label = self.view.byte_at(start + 1)
        try:
            kind = ExtensionKind(label)
        except ValueError:
            raise GifParseError(
                ErrorKind.INVALID_EXTENSION_TYPE, start + 1) from None

        if kind is ExtensionKind.GRAPHIC_CONTROL:
            if self.trust_declared_gce_size:
                data_len = self.view.byte_at(start + 2)
            else:
                data_len = GRAPHIC_CONTROL_DATA_LEN
            length = EXTENSION_PREFIX_LEN + data_len
        else:
            chain_offset = EXTENSION_CHAIN_OFFSETS[kind]
            length = chain_offset + sub_block_chain_length(
                self.view, start + chain_offset)

        block = self.emit(length, BlockKind.EXTENSION, kind)
        self.expect_terminator(ErrorKind.INVALID_EXTENSION_TERMINATOR)
        return block

    def parse_image(self):
        descriptor = self.parse_image_descriptor()
        self.parse_optional_color_table(
            descriptor.offset + IMAGE_DESCRIPTOR_PACKED_OFFSET)
        self.parse_image_data()

    def parse_image_descriptor(self):
        if self.view.byte_at(self.cursor) != IMAGE_SEPARATOR:
            raise GifParseError(
                ErrorKind.INVALID_IMAGE_DESCRIPTOR_MARKER, self.cursor)
        return self.emit(IMAGE_DESCRIPTOR_LEN, BlockKind.IMAGE_DESCRIPTOR)

    def parse_image_data(self):
        # LZW minimum code size, then the LZW data sub-blocks
        chain_len = sub_block_chain_length(
            self.view, self.cursor + LZW_MIN_CODE_SIZE_LEN)
        block = self.emit(LZW_MIN_CODE_SIZE_LEN + chain_len,
                          BlockKind.IMAGE_DATA)
        # sub_block_chain_length stops on the 0x00, so through parse() this
        # check always passes
        self.expect_terminator(ErrorKind.INVALID_IMAGE_DATA_TERMINATOR)
        return block

    def parse_trailer(self):
        if self.view.byte_at(self.cursor) != TRAILER_BYTE:
            raise GifParseError(ErrorKind.INVALID_TRAILER_BYTE, self.cursor)
        return self.emit(TRAILER_LEN, BlockKind.TRAILER)


def parse(data, trust_declared_gce_size=False):
    # data must start at the GIF magic; anything after the trailer is ignored
    return BlockParser(data, trust_declared_gce_size).parse()
