import io

from saturn.cmp import COUNT_MASK, TYPE_REPEAT


def decompress_body(body, size, width):
    unit = width.unit_size
    output = bytearray()
    with io.BytesIO(body) as stream:
        while len(output) < size:
            control = stream.read(1)
            assert control, (len(output), size)
            control = control[0]
            count = control & COUNT_MASK
            if control & TYPE_REPEAT:
                value = stream.read(unit)
                assert len(value) == unit, value
                output += value * (count + 2)
            else:
                literal = stream.read(unit * (count + 1))
                assert len(literal) == unit * (count + 1), (len(literal), count)
                output += literal
        rest = stream.read()
        assert not rest, rest
    assert len(output) == size, (len(output), size)
    return bytes(output)


def decompress(data, size, width):
    header_len = 4 if size <= 0xFFFF else 8
    header, body = data[:header_len], data[header_len:]
    assert header[1] == width.size_code, (header[1], width)
    assert int.from_bytes(header[-4 if size > 0xFFFF else -2:], 'big') == size
    return decompress_body(body, size, width)
