import random

import pytest

import gif_builder as gb
from gif_blocks import BlockKind, ErrorKind, GifParseError
from gif_carver import carve, carve_blocks, carve_bytes


def random_bytes(rng, length):
    return bytes(rng.getrandbits(8) for _ in range(length))


def test_round_trip_in_random_data():
    rng = random.Random(1234)
    stream = gb.minimal_gif()
    prefix = random_bytes(rng, 517)
    host = prefix + stream + random_bytes(rng, 300)

    start, end = carve(host, len(prefix))
    assert (start, end) == (517, 517 + len(stream))
    assert host[start:end] == stream
    assert carve_bytes(host, len(prefix)) == stream


def test_round_trip_multi_frame():
    rng = random.Random(99)
    stream = gb.gif(
        gb.application(), gb.comment(b'carve me'),
        gb.graphic_control(), gb.image(bytes(600), packed=0x83),
        gb.graphic_control(), gb.image(b'\x01\x02'),
        packed=0x85,
    )
    host = bytearray(random_bytes(rng, 64) + stream + b';;;' * 10)

    start, end, blocks = carve_blocks(host, 64)
    assert bytes(host[start:end]) == stream
    assert blocks[0].offset == 0
    assert blocks[-1].kind is BlockKind.TRAILER
    assert end == start + blocks[-1].end


def test_carve_at_start_of_buffer():
    stream = gb.minimal_gif()
    assert carve(stream, 0) == (0, len(stream))


def test_two_streams_carved_independently():
    first = gb.minimal_gif()
    second = gb.gif(gb.comment(b'second'), gb.image(), packed=0x80)
    host = b'\x11' * 10 + first + b'\x22' * 7 + second

    assert carve(host, 10) == (10, 10 + len(first))
    second_start = 10 + len(first) + 7
    assert carve(host, second_start) == (second_start, len(host))


def test_parser_error_propagates_unchanged():
    stream = gb.minimal_gif()
    host = b'\x00' * 40 + stream[:25]

    with pytest.raises(GifParseError) as info:
        carve(host, 40)
    # offsets stay relative to the candidate
    assert info.value.kind is ErrorKind.UNEXPECTED_END_OF_DATA
    assert info.value.offset == 25


def test_not_a_gif_at_offset():
    host = b'xxxx' + gb.minimal_gif()
    with pytest.raises(GifParseError) as info:
        carve(host, 1)
    assert info.value.kind is ErrorKind.HEADER_INVALID


@pytest.mark.parametrize('offset', [-1, 30, 1000])
def test_start_offset_out_of_range(offset):
    with pytest.raises(ValueError):
        carve(gb.minimal_gif(), offset)
