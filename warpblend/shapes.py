"""
Shape descriptors and index raveling for flat image buffers.

Every image handled by the kernel is a flat float32 sequence in row-major,
channel-minor order, paired with a (rows, cols, channels) triple.
"""

from collections import namedtuple

import numpy as np


class Shape(namedtuple('Shape', ['rows', 'cols', 'channels'])):
    """
    (rows, cols, channels) triple describing a flattened H x W x C buffer.
    """

    __slots__ = ()

    @classmethod
    def of(cls, shape):
        """
        Build a Shape from any 3-sequence (tuple, list, uint32 array).

        Args:
            shape: Sequence of three non-negative integers

        Returns:
            Shape instance
        """
        values = np.asarray(shape).ravel()
        if values.size != 3:
            raise ValueError(f"Shape must have exactly 3 entries, got {values.size}")
        rows, cols, channels = (int(v) for v in values)
        return cls(rows, cols, channels)

    @property
    def size(self):
        """Number of elements in a buffer of this shape."""
        return self.rows * self.cols * self.channels

    @property
    def row_stride(self):
        return self.cols * self.channels

    def ravel(self, row, col, channel):
        """
        Flat index of (row, col, channel).

        Works on Python ints and on integer numpy arrays alike.
        """
        return row * self.row_stride + col * self.channels + channel

    def to_buffer(self):
        """Shape handle as 3 x uint32, the layout the host uploads."""
        return np.array(self, dtype=np.uint32)

    def validate(self, name='image'):
        """
        Check that every dimension is positive.

        Raises:
            ValueError: If any dimension is zero or negative
        """
        for label, value in zip(self._fields, self):
            if value <= 0:
                raise ValueError(
                    f"{name} shape has non-positive {label}: {tuple(self)}"
                )
        return self


def validate_buffer(buffer, shape, name='image'):
    """
    Check a flat buffer against its shape descriptor.

    Args:
        buffer: Flat float32 array
        shape: Shape of the buffer
        name: Name used in error messages

    Raises:
        ValueError: On dimension, dtype or length mismatch
    """
    shape = Shape.of(shape).validate(name)

    if not isinstance(buffer, np.ndarray):
        raise ValueError(f"{name} buffer must be a numpy array, got {type(buffer).__name__}")
    if buffer.ndim != 1:
        raise ValueError(f"{name} buffer must be flat, got {buffer.ndim} dimensions")
    if buffer.dtype != np.float32:
        raise ValueError(f"{name} buffer must be float32, got {buffer.dtype}")
    if buffer.size != shape.size:
        raise ValueError(
            f"{name} buffer has {buffer.size} elements but shape {tuple(shape)} "
            f"requires {shape.size}"
        )

    return shape


def flatten_image(image):
    """
    Flatten an image array into a (buffer, shape) pair.

    Args:
        image: Image (H x W x C) or (H x W)

    Returns:
        buffer: Contiguous flat float32 array
        shape: Shape of the image
    """
    image = np.asarray(image)

    if image.ndim == 2:
        image = image[:, :, np.newaxis]
    elif image.ndim != 3:
        raise ValueError(f"Expected a 2-D or 3-D image, got {image.ndim} dimensions")

    rows, cols, channels = image.shape
    shape = Shape(rows, cols, channels)

    # A C-ordered copy lays elements out exactly as Shape.ravel indexes them
    buffer = np.array(image, dtype=np.float32, order='C').reshape(shape.size)

    return buffer, shape


def unflatten_buffer(buffer, shape):
    """
    Inverse of flatten_image.

    Returns:
        Image array of shape (rows, cols, channels)
    """
    shape = validate_buffer(buffer, shape)
    return buffer.reshape(shape).copy()
