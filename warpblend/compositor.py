"""
Mosaic compositing pipeline.

Ties the pieces together:
1. Weight masks for every source image
2. Canvas sizing from the mappings
3. Tiled warp-sample-blend accumulation
4. Normalization by the accumulated weight
"""

import math

import numpy as np

from .blending import FeatherBlender, crop_to_coverage
from .dispatcher import TileDispatcher
from .mapping import Mapping, as_mapping
from .shapes import Shape, flatten_image, unflatten_buffer


class MosaicCompositor:
    """
    Composites source images into one canvas given their mappings.

    Mappings send canvas coordinates to source coordinates (the kernel's
    inverse-warp convention).
    """

    def __init__(self,
                 dispatch_params=None,
                 blending_params=None,
                 fit_canvas=True,
                 crop=False,
                 verbose=True):
        """
        Initialize Mosaic Compositor.

        Args:
            dispatch_params: Parameters for TileDispatcher
            blending_params: Parameters for FeatherBlender
            fit_canvas: Size the canvas to the union of all warped frames and
                shift the mappings to match
            crop: Crop the result to the covered area
            verbose: Print progress
        """
        dispatch_params = dict(dispatch_params or {})
        dispatch_params.setdefault('verbose', verbose)
        self.dispatcher = TileDispatcher(**dispatch_params)

        blending_params = blending_params or {}
        self.blender = FeatherBlender(**blending_params)

        self.fit_canvas = fit_canvas
        self.crop = crop
        self.verbose = verbose

    def canvas(self, images, mappings, canvas_size=None):
        """
        Work out the canvas size and the mappings to use on it.

        Args:
            images: Source images
            mappings: Mappings (canvas -> source)
            canvas_size: Explicit (rows, cols), overrides fit_canvas

        Returns:
            (rows, cols), list of Mapping, offset Mapping
        """
        if canvas_size is not None:
            rows, cols = (int(v) for v in canvas_size)
            return (rows, cols), mappings, Mapping.identity()

        if not self.fit_canvas:
            rows, cols = images[0].shape[:2]
            return (rows, cols), mappings, Mapping.identity()

        sizes = [(img.shape[1], img.shape[0]) for img in images]
        extent, offset = Mapping.maximum_extent(mappings, sizes)
        width, height = extent.tolist()

        # float32 corners can overshoot an integer edge by a few ulps
        cols = max(1, math.ceil(round(width, 4)))
        rows = max(1, math.ceil(round(height, 4)))

        mappings = [m.transform(rhs=offset) for m in mappings]
        return (rows, cols), mappings, offset

    def composite(self, images, mappings, canvas_size=None, return_debug_info=False):
        """
        Composite images into a single mosaic.

        Args:
            images: List of images (H x W x C) or (H x W), same channel count
            mappings: One mapping per image (Mapping, 3x3 matrix or params)
            canvas_size: Optional (rows, cols) of the output
            return_debug_info: If True, return additional debug information

        Returns:
            result: Normalized float32 mosaic
            debug_info: (Optional) Dictionary with debug information
        """
        if len(images) == 0:
            raise ValueError("No images provided")

        if len(images) != len(mappings):
            raise ValueError(
                f"Got {len(images)} images but {len(mappings)} mappings"
            )

        images = [np.asarray(img) for img in images]
        channel_counts = {1 if img.ndim == 2 else img.shape[2] for img in images}
        if len(channel_counts) != 1:
            raise ValueError(f"Images have different channel counts: {sorted(channel_counts)}")

        mappings = [as_mapping(m) for m in mappings]
        (rows, cols), canvas_mappings, offset = self.canvas(images, mappings, canvas_size)

        if self.verbose:
            print(f"\nCompositing {len(images)} images onto a {rows}x{cols} canvas...")

        frames = []
        for img, mapping in zip(images, canvas_mappings):
            buffer, shape = flatten_image(self.blender.prepare(img))
            frames.append((mapping, buffer, shape))

        channels = frames[0][2].channels
        output_shape = Shape(rows, cols, channels)
        accumulator = self.dispatcher.new_accumulator(output_shape)
        self.dispatcher.composite(frames, accumulator, output_shape)

        if self.verbose:
            print("  Normalizing...")
        normalized, normalized_shape = self.blender.normalize(
            accumulator, output_shape, keep_weight=True
        )
        result = unflatten_buffer(normalized, normalized_shape)
        weight = result[:, :, -1]
        result = result[:, :, :-1]

        if self.crop:
            result = crop_to_coverage(result, weight)

        if result.shape[2] == 1:
            result = result[:, :, 0]

        if self.verbose:
            print("  Done!")

        if return_debug_info:
            debug_info = {
                'accumulator': accumulator,
                'accumulator_shape': output_shape,
                'weight': weight,
                'mappings': canvas_mappings,
                'offset': offset,
                'canvas_size': (rows, cols),
            }
            return result, debug_info

        return result
