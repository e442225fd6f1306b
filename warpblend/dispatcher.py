"""
Tiled dispatch of the warp-sample-blend kernel.

The destination index space (rows, cols, channels) is cut into fixed-size
tiles and each tile is evaluated on a thread pool. Tiles own disjoint output
locations, so no locking is needed inside one invocation. Invocations that
target the same accumulator are run strictly one after another.
"""

import math
import os
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from .kernel import Tile, warp_sample_blend_tile
from .mapping import Mapping
from .shapes import Shape, validate_buffer


class DispatchError(RuntimeError):
    """
    A kernel invocation failed part way through.

    The accumulator contents are undefined afterwards and the whole composite
    has to be treated as failed.
    """


class TileDispatcher:
    """
    Launches the kernel over a destination shape and sequences source images
    into one accumulator.
    """

    def __init__(self, tile_size_x=32, tile_size_y=32, tile_size_z=1,
                 num_workers=None, fallback_serial=False, verbose=False):
        """
        Initialize Tile Dispatcher.

        Args:
            tile_size_x: Tile width (columns)
            tile_size_y: Tile height (rows)
            tile_size_z: Channels per tile
            num_workers: Thread pool size (default: CPU count). 0 or 1 runs
                tiles on the calling thread
            fallback_serial: Retry a failed composite without the thread pool
            verbose: Print per-image progress
        """
        for name, value in (('tile_size_x', tile_size_x),
                            ('tile_size_y', tile_size_y),
                            ('tile_size_z', tile_size_z)):
            if int(value) <= 0:
                raise ValueError(f"{name} must be positive, got {value}")

        if num_workers is None:
            num_workers = os.cpu_count() or 1
        if num_workers < 0:
            raise ValueError(f"num_workers must be non-negative, got {num_workers}")

        self.tile_size_x = int(tile_size_x)
        self.tile_size_y = int(tile_size_y)
        self.tile_size_z = int(tile_size_z)
        self.num_workers = num_workers
        self.fallback_serial = fallback_serial
        self.verbose = verbose

    def grid(self, shape):
        """
        Number of tiles along (rows, cols, channels).

        Tiles need not divide the shape evenly; the last tile on each axis
        hangs over the edge and its outside elements are skipped.
        """
        shape = Shape.of(shape)
        return (
            math.ceil(shape.rows / self.tile_size_y),
            math.ceil(shape.cols / self.tile_size_x),
            math.ceil(shape.channels / self.tile_size_z),
        )

    def tiles(self, shape):
        """Yield every Tile covering `shape`."""
        grid_rows, grid_cols, grid_channels = self.grid(shape)

        for k in range(grid_channels):
            for i in range(grid_rows):
                for j in range(grid_cols):
                    yield Tile(
                        row=i * self.tile_size_y,
                        col=j * self.tile_size_x,
                        channel=k * self.tile_size_z,
                        height=self.tile_size_y,
                        width=self.tile_size_x,
                        depth=self.tile_size_z,
                    )

    @staticmethod
    def new_accumulator(shape):
        """Zero-initialized accumulator buffer for `shape`."""
        shape = Shape.of(shape).validate('output')
        return np.zeros(shape.size, dtype=np.float32)

    @staticmethod
    def mapping_buffer(mapping):
        """
        9 x float32 buffer for a Mapping or any 9-value array.

        Raises:
            ValueError: If the mapping does not have exactly 9 values
        """
        if isinstance(mapping, Mapping):
            return mapping.to_buffer()

        buffer = np.ascontiguousarray(mapping, dtype=np.float32).ravel()
        if buffer.size != 9:
            raise ValueError(f"Mapping must have 9 values, got {buffer.size}")
        return buffer

    def validate(self, mapping, input_buffer, input_shape, output_buffer, output_shape):
        """
        Check one invocation before anything is dispatched.

        Returns:
            mapping buffer, input Shape, output Shape

        Raises:
            ValueError: On any configuration error
        """
        mapping = self.mapping_buffer(mapping)
        input_shape = validate_buffer(input_buffer, input_shape, 'input')
        output_shape = validate_buffer(output_buffer, output_shape, 'output')

        if input_shape.channels != output_shape.channels:
            raise ValueError(
                f"Input has {input_shape.channels} channels but output has "
                f"{output_shape.channels}"
            )

        return mapping, input_shape, output_shape

    def dispatch(self, mapping, input_buffer, input_shape, output_buffer, output_shape):
        """
        Run one kernel invocation over the whole destination and wait for it.

        Args:
            mapping: Mapping or 9 floats (destination -> source)
            input_buffer: Flat float32 source buffer
            input_shape: Source (rows, cols, channels)
            output_buffer: Flat float32 accumulator, updated in place
            output_shape: Accumulator (rows, cols, channels)

        Raises:
            ValueError: On configuration errors, before any work is done
            DispatchError: If any tile fails
        """
        mapping, input_shape, output_shape = self.validate(
            mapping, input_buffer, input_shape, output_buffer, output_shape
        )
        self._run(mapping, input_buffer, input_shape, output_buffer, output_shape,
                  serial=self.num_workers <= 1)

    def _run(self, mapping, input_buffer, input_shape, output_buffer, output_shape, serial):
        tiles = self.tiles(output_shape)
        args = (mapping, input_buffer, input_shape, output_buffer, output_shape)

        if serial:
            try:
                for tile in tiles:
                    warp_sample_blend_tile(*args, tile)
            except Exception as e:
                raise DispatchError(f"Kernel invocation failed: {e}") from e
            return

        pool = ThreadPoolExecutor(max_workers=self.num_workers)
        try:
            futures = [pool.submit(warp_sample_blend_tile, *args, tile) for tile in tiles]
            for future in futures:
                future.result()
        except Exception as e:
            raise DispatchError(f"Kernel invocation failed: {e}") from e
        finally:
            pool.shutdown(wait=True, cancel_futures=True)

    def composite(self, frames, output_buffer, output_shape):
        """
        Accumulate a sequence of source images into one buffer.

        Args:
            frames: Iterable of (mapping, input_buffer, input_shape)
            output_buffer: Accumulator, zero-initialized by the caller
            output_shape: Accumulator shape

        Returns:
            output_buffer, after every frame has been added

        Raises:
            ValueError: If any frame is misconfigured (checked up front)
            DispatchError: If an invocation fails and no fallback is enabled
        """
        frames = list(frames)
        checked = [
            self.validate(mapping, input_buffer, input_shape, output_buffer, output_shape)
            for mapping, input_buffer, input_shape in frames
        ]
        buffers = [input_buffer for _, input_buffer, _ in frames]

        initial = output_buffer.copy() if self.fallback_serial else None

        try:
            self._composite(checked, buffers, output_buffer,
                            serial=self.num_workers <= 1)
        except DispatchError as e:
            if initial is None:
                raise
            if self.verbose:
                print(f"  Dispatch failed ({e}), retrying on a single thread...")
            output_buffer[:] = initial
            self._composite(checked, buffers, output_buffer, serial=True)

        return output_buffer

    def _composite(self, checked, buffers, output_buffer, serial):
        n = len(checked)
        for i, ((mapping, input_shape, output_shape), input_buffer) in enumerate(zip(checked, buffers)):
            if self.verbose:
                print(f"  Warping image {i + 1}/{n} {tuple(input_shape)} "
                      f"-> {tuple(output_shape)}...")
            self._run(mapping, input_buffer, input_shape, output_buffer, output_shape,
                      serial=serial)
