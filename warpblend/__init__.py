"""
Feathered mosaic compositing of perspective-warped images.

Each source image carries a trailing weight channel. A tiled, thread-parallel
kernel inverse-warps every canvas pixel into each source, samples it
bilinearly with zero padding, and accumulates color * weight and weight into
a shared buffer. Dividing the two gives the blended mosaic.

Main components:
- Mapping: 3x3 projective mappings (canvas -> source)
- Shape: flat buffer shape descriptors and index raveling
- Kernel: warp-sample-blend over one tile of the canvas
- TileDispatcher: tiling, thread pool, sequencing into one accumulator
- FeatherBlender: weight masks and normalization
- warp_image: plain single-image warp with background fill and coverage mask

Example usage:
    from warpblend.image_io import read_images, read_mappings, write_image
    from warpblend.compositor import MosaicCompositor

    images = read_images(['img1.jpg', 'img2.jpg'])
    mappings = read_mappings('mappings.json')
    mosaic = MosaicCompositor().composite(images, mappings)
    write_image('output.png', mosaic)
"""

__version__ = '0.1.0'

from .mapping import Mapping
from .shapes import Shape, flatten_image, unflatten_buffer
from .kernel import Tile, bilinear_sample, warp_sample_blend_tile
from .dispatcher import DispatchError, TileDispatcher
from .blending import FeatherBlender, feather_weights, normalize_accumulator, with_weight_channel
from .compositor import MosaicCompositor
from .warping import warp_image
from .image_io import read_image, write_image, read_images, read_mappings

__all__ = [
    'Mapping',
    'Shape',
    'flatten_image',
    'unflatten_buffer',
    'Tile',
    'bilinear_sample',
    'warp_sample_blend_tile',
    'DispatchError',
    'TileDispatcher',
    'FeatherBlender',
    'feather_weights',
    'normalize_accumulator',
    'with_weight_channel',
    'MosaicCompositor',
    'warp_image',
    'read_image',
    'write_image',
    'read_images',
    'read_mappings',
]
