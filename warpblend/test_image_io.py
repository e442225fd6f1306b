"""
Tests for image/mapping I/O and the command-line entry point.
"""

import json

import numpy as np
import pytest

from warpblend.image_io import (
    read_image,
    read_mappings,
    resize_image,
    write_image,
    write_mappings,
)
from warpblend.mapping import Mapping
from warpblend.panorama_cli import main


def test_write_and_read_gray(tmp_path):
    image = np.arange(48, dtype=np.uint8).reshape(6, 8)
    path = tmp_path / 'gray.png'

    write_image(path, image)
    np.testing.assert_array_equal(read_image(path), image)


def test_write_float_rgb(tmp_path):
    image = np.full((4, 5, 3), 300.0)
    image[0, 0] = [-5.0, 12.4, 12.6]
    path = tmp_path / 'rgb.png'

    write_image(path, image)
    result = read_image(path)

    assert result.shape == (4, 5, 3)
    assert result[1, 1, 0] == 255
    np.testing.assert_array_equal(result[0, 0], [0, 12, 13])


def test_read_missing_image(tmp_path):
    with pytest.raises(IOError, match='missing.png'):
        read_image(tmp_path / 'missing.png')


def test_resize_image():
    image = np.zeros((10, 20, 3), dtype=np.uint8)
    assert resize_image(image, 0.5).shape == (5, 10, 3)


def test_mappings_round_trip(tmp_path):
    path = tmp_path / 'maps.json'
    path.write_text(json.dumps([[0, 0], [[1, 0, -4], [0, 1, 0], [0, 0, 1]], [0] * 6]))

    mappings = read_mappings(path)
    assert [m.kind for m in mappings] == ['translational', 'projective', 'affine']
    np.testing.assert_array_equal(mappings[1].mat, Mapping.shift(-4, 0).mat)

    out = tmp_path / 'out.json'
    write_mappings(out, mappings)
    again = read_mappings(out)
    for a, b in zip(mappings, again):
        np.testing.assert_array_equal(a.mat, b.mat)


def test_read_mappings_errors(tmp_path):
    with pytest.raises(IOError):
        read_mappings(tmp_path / 'missing.json')

    path = tmp_path / 'bad.json'
    path.write_text('{"not": "a list"}')
    with pytest.raises(ValueError):
        read_mappings(path)


def test_cli(tmp_path):
    left = np.full((8, 8), 60, dtype=np.uint8)
    right = np.full((8, 8), 180, dtype=np.uint8)
    write_image(tmp_path / 'left.png', left)
    write_image(tmp_path / 'right.png', right)
    (tmp_path / 'maps.json').write_text(json.dumps([[0, 0], [-4, 0]]))

    output = tmp_path / 'out' / 'mosaic.png'
    accumulator = tmp_path / 'acc.npy'
    code = main([
        str(tmp_path / 'left.png'), str(tmp_path / 'right.png'),
        '--mappings', str(tmp_path / 'maps.json'),
        '-o', str(output),
        '--workers', '2',
        '--tile-size', '5',
        '--no-feather',
        '--save-accumulator', str(accumulator),
    ])

    assert code == 0
    mosaic = read_image(output)
    assert mosaic.shape == (8, 12)
    assert (mosaic[:, :4] == 60).all()
    assert (mosaic[:, 4:8] == 120).all()
    assert (mosaic[:, 8:] == 180).all()
    assert np.load(accumulator).size == 8 * 12 * 2


def test_cli_scale(tmp_path):
    write_image(tmp_path / 'left.png', np.full((8, 8), 60, dtype=np.uint8))
    write_image(tmp_path / 'right.png', np.full((8, 8), 180, dtype=np.uint8))
    (tmp_path / 'maps.json').write_text(json.dumps([[0, 0], [-4, 0]]))

    output = tmp_path / 'mosaic.png'
    code = main([
        str(tmp_path / 'left.png'), str(tmp_path / 'right.png'),
        '--mappings', str(tmp_path / 'maps.json'),
        '-o', str(output),
        '--scale', '0.5',
        '--no-feather',
    ])

    assert code == 0
    mosaic = read_image(output).astype(int)
    assert mosaic.shape == (4, 6)
    assert np.abs(mosaic[:, :2] - 60).max() <= 1
    assert np.abs(mosaic[:, 2:4] - 120).max() <= 1
    assert np.abs(mosaic[:, 4:] - 180).max() <= 1


def test_cli_rejects_non_positive_scale(tmp_path):
    write_image(tmp_path / 'a.png', np.zeros((4, 4), dtype=np.uint8))
    (tmp_path / 'maps.json').write_text(json.dumps([[0, 0]]))

    code = main([str(tmp_path / 'a.png'), '--mappings', str(tmp_path / 'maps.json'),
                 '-o', str(tmp_path / 'out.png'), '--scale', '0'])
    assert code == 1


def test_cli_missing_input(tmp_path):
    assert main([str(tmp_path / 'nope.png'), '--mappings', str(tmp_path / 'nope.json')]) == 1


def test_cli_mapping_count_mismatch(tmp_path):
    write_image(tmp_path / 'a.png', np.zeros((4, 4), dtype=np.uint8))
    (tmp_path / 'maps.json').write_text(json.dumps([[0, 0], [1, 0]]))

    code = main([str(tmp_path / 'a.png'), '--mappings', str(tmp_path / 'maps.json'),
                 '-o', str(tmp_path / 'out.png')])
    assert code == 1
