"""
Weight masks and normalization for feathered blending.

Source images carry a trailing weight channel. The kernel accumulates
color * weight and weight; the normalization pass here divides the two to
get the weight-averaged composite.
"""

import numpy as np
from scipy.ndimage import distance_transform_edt, gaussian_filter

from .shapes import Shape, validate_buffer


class FeatherBlender:
    """
    Builds feather weight masks and normalizes finished accumulators.

    Weights fall off towards the frame border, so overlapping frames
    cross-fade instead of leaving visible seams.
    """

    def __init__(self, feather=True, smoothing_sigma=0.0):
        """
        Initialize Feather Blender.

        Args:
            feather: Use distance-to-border weights; if False every pixel
                gets weight 1
            smoothing_sigma: Standard deviation of an extra Gaussian smoothing
                of the weight mask (0 disables it)
        """
        if smoothing_sigma < 0:
            raise ValueError(f"smoothing_sigma must be non-negative, got {smoothing_sigma}")

        self.feather = feather
        self.smoothing_sigma = smoothing_sigma

    def weights(self, rows, cols):
        """
        Weight mask for a rows x cols frame.

        Returns:
            float32 array (rows x cols) with values in (0, 1]
        """
        if not self.feather:
            return np.ones((rows, cols), dtype=np.float32)

        mask = feather_weights(rows, cols)

        if self.smoothing_sigma > 0:
            mask = gaussian_filter(mask, sigma=self.smoothing_sigma, mode='nearest')
            mask = mask / mask.max()

        return mask.astype(np.float32)

    def prepare(self, image):
        """Append this blender's weight mask to an image."""
        image = np.asarray(image)
        return with_weight_channel(image, self.weights(*image.shape[:2]))

    def normalize(self, buffer, shape, keep_weight=False):
        return normalize_accumulator(buffer, shape, keep_weight=keep_weight)


def feather_weights(rows, cols):
    """
    Distance-to-border weights for a rows x cols frame.

    Each pixel gets its Euclidean distance to the nearest pixel outside the
    frame, scaled so the center has weight 1. Border pixels keep a small
    non-zero weight.
    """
    if rows <= 0 or cols <= 0:
        raise ValueError(f"Frame size must be positive, got {rows}x{cols}")

    frame = np.zeros((rows + 2, cols + 2), dtype=np.uint8)
    frame[1:-1, 1:-1] = 1

    distance = distance_transform_edt(frame)[1:-1, 1:-1]
    return (distance / distance.max()).astype(np.float32)


def with_weight_channel(image, weights=None):
    """
    Append a weight channel to an image.

    Args:
        image: Image (H x W x C) or (H x W)
        weights: Weight mask (H x W); all ones if None

    Returns:
        float32 image (H x W x C+1) whose trailing channel is the weight
    """
    image = np.asarray(image, dtype=np.float32)
    if image.ndim == 2:
        image = image[:, :, np.newaxis]

    h, w = image.shape[:2]
    if weights is None:
        weights = np.ones((h, w), dtype=np.float32)

    weights = np.asarray(weights, dtype=np.float32)
    if weights.shape != (h, w):
        raise ValueError(
            f"Weight mask shape {weights.shape} does not match image {(h, w)}"
        )

    return np.concatenate([image, weights[:, :, np.newaxis]], axis=2)


def normalize_accumulator(buffer, shape, keep_weight=False):
    """
    Divide accumulated color channels by the accumulated weight.

    Pixels that received no weight (weight == 0) come out as 0, never NaN.

    Args:
        buffer: Flat accumulator buffer
        shape: Accumulator Shape (last channel is the weight)
        keep_weight: Keep the weight channel in the result

    Returns:
        buffer: Flat float32 normalized buffer
        shape: Shape of the result
    """
    shape = validate_buffer(buffer, shape, 'accumulator')

    out_channels = shape.channels if keep_weight else shape.channels - 1
    if out_channels == 0:
        raise ValueError("Accumulator has no color channels to normalize")
    out_shape = Shape(shape.rows, shape.cols, out_channels)

    pixels = np.arange(shape.rows * shape.cols, dtype=np.int64)
    row = pixels // shape.cols
    col = pixels % shape.cols

    weight = buffer[shape.ravel(row, col, shape.channels - 1)]
    covered = weight != 0

    out = np.zeros(out_shape.size, dtype=np.float32)
    for channel in range(shape.channels - 1):
        color = buffer[shape.ravel(row, col, channel)]
        value = np.zeros_like(color)
        np.divide(color, weight, out=value, where=covered)
        out[out_shape.ravel(row, col, channel)] = value

    if keep_weight:
        out[out_shape.ravel(row, col, shape.channels - 1)] = weight

    return out, out_shape


def crop_to_coverage(image, weight):
    """
    Crop an image to the bounding box of pixels with non-zero weight.

    Args:
        image: Image (H x W x C) or (H x W)
        weight: Weight mask (H x W)

    Returns:
        Cropped image (unchanged if nothing is covered)
    """
    mask = np.asarray(weight) > 0

    if not np.any(mask):
        return image

    rows = np.any(mask, axis=1)
    cols = np.any(mask, axis=0)

    y_min, y_max = np.where(rows)[0][[0, -1]]
    x_min, x_max = np.where(cols)[0][[0, -1]]

    return image[y_min:y_max+1, x_min:x_max+1]
