"""
Warp-sample-blend kernel.

For every destination (row, col, channel) the kernel inverse-warps the pixel
through a projective mapping, bilinearly samples the source image with zero
padding outside its borders, and adds a weight-premultiplied contribution to
an accumulator buffer:

    weight channel:  out += w
    other channels:  out += w * sample(channel)

where w is the bilinear sample of the source's trailing (weight) channel.

All buffers are flat float32 arrays indexed through Shape.ravel. The kernel
performs no validation; see dispatcher.TileDispatcher for that.
"""

from collections import namedtuple

import numpy as np

from .shapes import Shape


# Block of the destination index space handled as one unit of work.
# (row, col, channel) is the first element, (height, width, depth) the extent.
Tile = namedtuple('Tile', ['row', 'col', 'channel', 'height', 'width', 'depth'])


def sample_corner(buffer, shape, col, row, channel, fill=0.0):
    """
    Read source values at integer pixel coordinates, `fill` outside the image.

    Args:
        buffer: Flat source buffer
        shape: Source Shape
        col: Integer column coordinates (array)
        row: Integer row coordinates (array)
        channel: Channel to read
        fill: Value returned for coordinates outside the image

    Returns:
        float32 array of samples, same shape as `col`
    """
    col = np.asarray(col, dtype=np.int64)
    row = np.asarray(row, dtype=np.int64)

    valid = (col >= 0) & (col < shape.cols) & (row >= 0) & (row < shape.rows)

    values = np.full(col.shape, fill, dtype=np.float32)
    values[valid] = buffer[shape.ravel(row[valid], col[valid], channel)]
    return values


def bilinear_sample(buffer, shape, x, y, channel, fill=0.0):
    """
    Bilinear interpolation of one channel at fractional coordinates.

    Each of the four corners is padded independently, so samples near the
    border mix in `fill` (zero by default) for the corners that fall outside.

    Args:
        buffer: Flat source buffer
        shape: Source Shape
        x: Column coordinates (float32 array)
        y: Row coordinates (float32 array)
        channel: Channel to sample
        fill: Value of corners outside the image

    Returns:
        Interpolated float32 values
    """
    shape = Shape.of(shape)
    x = np.asarray(x, dtype=np.float32)
    y = np.asarray(y, dtype=np.float32)

    left = np.floor(x)
    top = np.floor(y)

    right_weight = x - left
    left_weight = 1 - right_weight
    bottom_weight = y - top
    top_weight = 1 - bottom_weight

    left = left.astype(np.int64)
    top = top.astype(np.int64)
    right = left + 1
    bottom = top + 1

    tl = sample_corner(buffer, shape, left, top, channel, fill)
    tr = sample_corner(buffer, shape, right, top, channel, fill)
    bl = sample_corner(buffer, shape, left, bottom, channel, fill)
    br = sample_corner(buffer, shape, right, bottom, channel, fill)

    return (
        top_weight * left_weight * tl
        + top_weight * right_weight * tr
        + bottom_weight * left_weight * bl
        + bottom_weight * right_weight * br
    )


def inverse_warp(mapping, col, row):
    """
    Map destination pixels to source coordinates.

    Args:
        mapping: 9 x float32 row-major matrix
        col: Destination columns (float32 array)
        row: Destination rows (float32 array)

    Returns:
        x, y: Source coordinates; non-finite where the homogeneous
            denominator vanishes
    """
    m = mapping

    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        x_ = m[0] * col + m[1] * row + m[2]
        y_ = m[3] * col + m[4] * row + m[5]
        v = m[6] * col + m[7] * row + m[8]
        x = x_ / v
        y = y_ / v

    return x, y


def warp_sample_blend_tile(mapping, input_buffer, input_shape,
                           output_buffer, output_shape, tile):
    """
    Run the kernel for every (row, col, channel) of one tile.

    Elements of the tile that fall outside the destination shape are skipped,
    as are destination pixels whose source coordinate is out of range.
    `output_buffer` is updated in place.

    Args:
        mapping: 9 x float32 mapping buffer (destination -> source)
        input_buffer: Flat source buffer, trailing channel is the weight
        input_shape: Source Shape
        output_buffer: Flat accumulator buffer
        output_shape: Accumulator Shape
        tile: Tile to evaluate
    """
    input_shape = Shape.of(input_shape)
    output_shape = Shape.of(output_shape)

    rows = np.arange(tile.row, tile.row + tile.height, dtype=np.int64)
    cols = np.arange(tile.col, tile.col + tile.width, dtype=np.int64)
    channels = np.arange(tile.channel, tile.channel + tile.depth, dtype=np.int64)

    row, col = np.meshgrid(rows, cols, indexing='ij')
    inside = (row < output_shape.rows) & (col < output_shape.cols)
    channels = channels[channels < output_shape.channels]

    if not inside.any() or channels.size == 0:
        return

    row = row[inside]
    col = col[inside]

    x, y = inverse_warp(mapping, col.astype(np.float32), row.astype(np.float32))

    # Inclusive upper bound; NaN coordinates compare False and drop out here
    in_range = (
        (x >= 0) & (x <= input_shape.cols - 1)
        & (y >= 0) & (y <= input_shape.rows - 1)
    )
    if not in_range.any():
        return

    row, col, x, y = row[in_range], col[in_range], x[in_range], y[in_range]

    weight_channel = input_shape.channels - 1
    weight = bilinear_sample(input_buffer, input_shape, x, y, weight_channel)

    for channel in channels:
        idx = output_shape.ravel(row, col, channel)
        if channel == weight_channel:
            output_buffer[idx] += weight
        else:
            value = bilinear_sample(input_buffer, input_shape, x, y, channel)
            output_buffer[idx] += weight * value


def warp_sample_blend_element(mapping, input_buffer, input_shape,
                              output_buffer, output_shape, row, col, channel):
    """
    Scalar version of the kernel for a single destination element.

    Used as the reference the tiled version is checked against.

    Returns:
        True if the element was written, False if the worker exited early
    """
    input_shape = Shape.of(input_shape)
    output_shape = Shape.of(output_shape)

    if row >= output_shape.rows or col >= output_shape.cols or channel >= output_shape.channels:
        return False

    m = np.asarray(mapping, dtype=np.float32)
    fcol = np.float32(col)
    frow = np.float32(row)

    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        x_ = m[0] * fcol + m[1] * frow + m[2]
        y_ = m[3] * fcol + m[4] * frow + m[5]
        v = m[6] * fcol + m[7] * frow + m[8]
        x = x_ / v
        y = y_ / v

    if not (0 <= x <= input_shape.cols - 1 and 0 <= y <= input_shape.rows - 1):
        return False

    xs = np.array([x], dtype=np.float32)
    ys = np.array([y], dtype=np.float32)

    weight_channel = input_shape.channels - 1
    weight = bilinear_sample(input_buffer, input_shape, xs, ys, weight_channel)[0]

    idx = output_shape.ravel(row, col, channel)
    if channel == weight_channel:
        output_buffer[idx] += weight
    else:
        value = bilinear_sample(input_buffer, input_shape, xs, ys, channel)[0]
        output_buffer[idx] += weight * value

    return True
