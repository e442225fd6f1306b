"""
Plain perspective warp of a single image.

Unlike the warp-sample-blend kernel this assigns the sample to the output
instead of accumulating it, and can fill uncovered pixels with a background.
"""

import numpy as np

from .kernel import bilinear_sample, inverse_warp
from .mapping import as_mapping
from .shapes import flatten_image


def warp_image(mapping, image, out_size, background=None):
    """
    Warp an image into an output of the given size.

    Args:
        mapping: Mapping (output -> source), 3x3 matrix or params
        image: Source image (H x W x C) or (H x W)
        out_size: (rows, cols) of the output
        background: Optional scalar or per-channel fill value. When given,
            the source is padded by one pixel of background so the frame
            edge blends into it, and every uncovered pixel is filled with it.

    Returns:
        warped: Output image with the dimensions of `image`; integer inputs
            keep their dtype, anything else comes back as float32
        valid: (rows, cols) boolean mask of pixels that sampled the source
    """
    image = np.asarray(image)
    buffer, shape = flatten_image(image)

    rows, cols = (int(v) for v in out_size)
    if rows <= 0 or cols <= 0:
        raise ValueError(f"Output size must be positive, got {(rows, cols)}")

    if background is None:
        fill = np.zeros(shape.channels, dtype=np.float32)
        padding = 0.0
    else:
        try:
            fill = np.broadcast_to(
                np.asarray(background, dtype=np.float32).ravel(), (shape.channels,)
            )
        except ValueError:
            raise ValueError(
                f"Background must be a scalar or have {shape.channels} values"
            ) from None
        padding = 1.0

    row, col = np.meshgrid(
        np.arange(rows, dtype=np.float32), np.arange(cols, dtype=np.float32),
        indexing='ij'
    )
    x, y = inverse_warp(as_mapping(mapping).to_buffer(), col.ravel(), row.ravel())

    valid = (
        (x >= -padding) & (x <= shape.cols - 1 + padding)
        & (y >= -padding) & (y <= shape.rows - 1 + padding)
    )

    warped = np.empty((rows * cols, shape.channels), dtype=np.float32)
    warped[:] = fill
    for channel in range(shape.channels):
        warped[valid, channel] = bilinear_sample(
            buffer, shape, x[valid], y[valid], channel, fill=fill[channel]
        )

    warped = warped.reshape(rows, cols, shape.channels)
    if image.ndim == 2:
        warped = warped[:, :, 0]

    if np.issubdtype(image.dtype, np.integer):
        info = np.iinfo(image.dtype)
        warped = np.clip(np.rint(warped), info.min, info.max).astype(image.dtype)

    return warped, valid.reshape(rows, cols)
