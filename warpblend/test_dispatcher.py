"""
Tests for TileDispatcher: tiling, validation, sequencing and failures.
"""

import threading

import numpy as np
import pytest

from warpblend import dispatcher as dispatcher_module
from warpblend.dispatcher import DispatchError, TileDispatcher
from warpblend.kernel import warp_sample_blend_tile
from warpblend.mapping import Mapping
from warpblend.shapes import Shape, flatten_image


def frame(rows, cols, colors=1, seed=0, mapping=None):
    rng = np.random.default_rng(seed)
    image = np.concatenate([
        rng.uniform(0, 1, size=(rows, cols, colors)),
        rng.uniform(0.2, 1, size=(rows, cols, 1)),
    ], axis=2)
    buffer, shape = flatten_image(image)
    return (mapping or Mapping.identity(), buffer, shape)


def frames():
    return [
        frame(6, 6, seed=1, mapping=Mapping.identity()),
        frame(6, 6, seed=2, mapping=Mapping.shift(-2, 0)),
        frame(6, 6, seed=3, mapping=Mapping.from_params([0.05, 0.01, -0.02, 0.03, -1.5, 0.5])),
    ]


class TestTiling:
    def test_grid(self):
        dispatcher = TileDispatcher(tile_size_x=4, tile_size_y=3, tile_size_z=2)
        assert dispatcher.grid((10, 7, 3)) == (4, 2, 2)

    def test_tiles_cover_every_element_once(self):
        dispatcher = TileDispatcher(tile_size_x=4, tile_size_y=3, tile_size_z=2)
        shape = Shape(10, 7, 3)
        counts = np.zeros(shape.size, dtype=int)

        for tile in dispatcher.tiles(shape):
            for row in range(tile.row, min(tile.row + tile.height, shape.rows)):
                for col in range(tile.col, min(tile.col + tile.width, shape.cols)):
                    for ch in range(tile.channel, min(tile.channel + tile.depth, shape.channels)):
                        counts[shape.ravel(row, col, ch)] += 1

        assert (counts == 1).all()

    @pytest.mark.parametrize('name', ['tile_size_x', 'tile_size_y', 'tile_size_z'])
    def test_non_positive_tile_size(self, name):
        with pytest.raises(ValueError):
            TileDispatcher(**{name: 0})

    def test_negative_workers(self):
        with pytest.raises(ValueError):
            TileDispatcher(num_workers=-1)


class TestValidation:
    @pytest.fixture
    def dispatcher(self):
        return TileDispatcher(num_workers=1)

    def test_channel_mismatch(self, dispatcher):
        mapping, buffer, shape = frame(4, 4, colors=2)
        out_shape = Shape(4, 4, 2)
        out = dispatcher.new_accumulator(out_shape)

        with pytest.raises(ValueError, match='channels'):
            dispatcher.dispatch(mapping, buffer, shape, out, out_shape)

    def test_zero_dimension(self, dispatcher):
        mapping, buffer, shape = frame(4, 4)
        out = np.zeros(0, dtype=np.float32)

        with pytest.raises(ValueError, match='non-positive'):
            dispatcher.dispatch(mapping, buffer, shape, out, (0, 4, 2))

        with pytest.raises(ValueError):
            dispatcher.new_accumulator((4, 4, 0))

    def test_buffer_length_mismatch(self, dispatcher):
        mapping, buffer, shape = frame(4, 4)
        out_shape = Shape(4, 4, 2)
        out = dispatcher.new_accumulator(out_shape)

        with pytest.raises(ValueError, match='elements'):
            dispatcher.dispatch(mapping, buffer[:-1], shape, out, out_shape)

    def test_buffer_dtype(self, dispatcher):
        mapping, buffer, shape = frame(4, 4)
        out_shape = Shape(4, 4, 2)
        out = np.zeros(out_shape.size, dtype=np.float64)

        with pytest.raises(ValueError, match='float32'):
            dispatcher.dispatch(mapping, buffer, shape, out, out_shape)

    def test_mapping_size(self, dispatcher):
        _, buffer, shape = frame(4, 4)
        out_shape = Shape(4, 4, 2)
        out = dispatcher.new_accumulator(out_shape)

        with pytest.raises(ValueError, match='9 values'):
            dispatcher.dispatch(np.ones(8), buffer, shape, out, out_shape)

    def test_composite_checks_every_frame_first(self, dispatcher):
        good = frame(4, 4, seed=1)
        bad_mapping, bad_buffer, _ = frame(4, 4, seed=2)
        out_shape = Shape(4, 4, 2)
        out = dispatcher.new_accumulator(out_shape)

        with pytest.raises(ValueError):
            dispatcher.composite([good, (bad_mapping, bad_buffer, (4, 5, 2))], out, out_shape)

        assert not out.any()


class TestSequencing:
    def test_threaded_matches_serial(self):
        out_shape = Shape(7, 9, 2)

        serial = TileDispatcher(tile_size_x=2, tile_size_y=3, num_workers=1)
        expected = serial.composite(frames(), serial.new_accumulator(out_shape), out_shape)

        threaded = TileDispatcher(tile_size_x=2, tile_size_y=3, num_workers=4)
        result = threaded.composite(frames(), threaded.new_accumulator(out_shape), out_shape)

        np.testing.assert_array_equal(result, expected)

    def test_order_does_not_matter(self):
        out_shape = Shape(7, 9, 2)
        dispatcher = TileDispatcher(num_workers=2)

        forward = dispatcher.composite(frames(), dispatcher.new_accumulator(out_shape), out_shape)
        backward = dispatcher.composite(frames()[::-1], dispatcher.new_accumulator(out_shape), out_shape)

        np.testing.assert_allclose(forward, backward, rtol=1e-6, atol=1e-6)

    def test_composite_is_sum_of_dispatches(self):
        out_shape = Shape(7, 9, 2)
        dispatcher = TileDispatcher(num_workers=1)

        expected = dispatcher.new_accumulator(out_shape)
        for mapping, buffer, shape in frames():
            single = dispatcher.new_accumulator(out_shape)
            dispatcher.dispatch(mapping, buffer, shape, single, out_shape)
            expected += single

        result = dispatcher.composite(frames(), dispatcher.new_accumulator(out_shape), out_shape)
        np.testing.assert_allclose(result, expected, rtol=1e-6)


class TestFailures:
    def test_tile_failure_raises_dispatch_error(self, monkeypatch):
        def broken(*args):
            raise MemoryError("out of device memory")

        monkeypatch.setattr(dispatcher_module, 'warp_sample_blend_tile', broken)

        for workers in (1, 3):
            dispatcher = TileDispatcher(num_workers=workers)
            mapping, buffer, shape = frame(4, 4)
            out = dispatcher.new_accumulator(shape)

            with pytest.raises(DispatchError, match='out of device memory'):
                dispatcher.dispatch(mapping, buffer, shape, out, shape)

    def test_composite_without_fallback_propagates(self, monkeypatch):
        def broken(*args):
            raise RuntimeError("driver fault")

        monkeypatch.setattr(dispatcher_module, 'warp_sample_blend_tile', broken)

        dispatcher = TileDispatcher(num_workers=2)
        out_shape = Shape(7, 9, 2)
        with pytest.raises(DispatchError):
            dispatcher.composite(frames(), dispatcher.new_accumulator(out_shape), out_shape)

    def test_serial_fallback_reruns_whole_sequence(self, monkeypatch):
        out_shape = Shape(7, 9, 2)
        reference = TileDispatcher(num_workers=1)
        expected = reference.composite(frames(), reference.new_accumulator(out_shape), out_shape)

        lock = threading.Lock()
        calls = {'count': 0}

        def flaky(*args):
            with lock:
                calls['count'] += 1
                fail = calls['count'] == 5
            if fail:
                raise RuntimeError("transient fault")
            warp_sample_blend_tile(*args)

        monkeypatch.setattr(dispatcher_module, 'warp_sample_blend_tile', flaky)

        dispatcher = TileDispatcher(tile_size_x=2, tile_size_y=2, num_workers=3,
                                    fallback_serial=True)
        result = dispatcher.composite(frames(), dispatcher.new_accumulator(out_shape), out_shape)

        np.testing.assert_array_equal(result, expected)
