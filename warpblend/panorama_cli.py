#!/usr/bin/env python3
"""
Mosaic compositing CLI.

Usage:
    python -m warpblend.panorama_cli image1.jpg image2.jpg --mappings maps.json [options]
"""

import argparse
import os
import sys
import time

import numpy as np

from .compositor import MosaicCompositor
from .image_io import read_images, read_mappings, resize_image, write_image


def parse_canvas(value):
    """Parse a canvas size given as ROWSxCOLS."""
    try:
        rows, cols = (int(v) for v in value.lower().split('x'))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Canvas must look like ROWSxCOLS, got {value!r}")
    if rows <= 0 or cols <= 0:
        raise argparse.ArgumentTypeError(f"Canvas size must be positive, got {value!r}")
    return rows, cols


def build_parser():
    parser = argparse.ArgumentParser(
        description='Composite images into a mosaic with feathered blending'
    )

    parser.add_argument(
        'images',
        nargs='+',
        help='Input images, in the same order as the mappings'
    )

    parser.add_argument(
        '-m', '--mappings',
        required=True,
        help='JSON file with one mapping (canvas -> image) per input image'
    )

    parser.add_argument(
        '-o', '--output',
        default='outputs/mosaic.png',
        help='Output mosaic path (default: outputs/mosaic.png)'
    )

    parser.add_argument(
        '--canvas',
        type=parse_canvas,
        default=None,
        help='Canvas size as ROWSxCOLS (default: fit all warped images)'
    )

    parser.add_argument(
        '--scale',
        type=float,
        default=1.0,
        help='Resize inputs by this factor before compositing (default: 1.0)'
    )

    parser.add_argument(
        '--tile-size',
        type=int,
        default=32,
        help='Spatial tile size for dispatch (default: 32)'
    )

    parser.add_argument(
        '--workers',
        type=int,
        default=None,
        help='Worker threads (default: CPU count)'
    )

    parser.add_argument(
        '--no-feather',
        action='store_true',
        help='Use uniform weights instead of distance-to-border feathering'
    )

    parser.add_argument(
        '--smoothing',
        type=float,
        default=0.0,
        help='Gaussian smoothing sigma for the weight masks (default: 0)'
    )

    parser.add_argument(
        '--crop',
        action='store_true',
        help='Crop the mosaic to the covered area'
    )

    parser.add_argument(
        '--save-accumulator',
        default=None,
        help='Also save the raw accumulator (.npy)'
    )

    return parser


def main(argv=None):
    """Main function for CLI."""
    args = build_parser().parse_args(argv)

    for img_path in args.images + [args.mappings]:
        if not os.path.exists(img_path):
            print(f"Error: File not found: {img_path}")
            return 1

    if args.scale <= 0:
        print(f"Error: --scale must be positive, got {args.scale}")
        return 1

    output_dir = os.path.dirname(args.output)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)

    print("\nReading images...")
    try:
        images = read_images(args.images)
        mappings = read_mappings(args.mappings)
    except (IOError, ValueError) as e:
        print(f"Error reading inputs: {str(e)}")
        return 1

    if len(mappings) != len(images):
        print(f"Error: {len(images)} images but {len(mappings)} mappings")
        return 1

    if args.scale != 1.0:
        images = [resize_image(img, args.scale) for img in images]
        mappings = [m.rescale(args.scale) for m in mappings]

    for i, img in enumerate(images):
        print(f"  Image {i+1}: {img.shape}")

    compositor = MosaicCompositor(
        dispatch_params={
            'tile_size_x': args.tile_size,
            'tile_size_y': args.tile_size,
            'num_workers': args.workers,
            'fallback_serial': True,
        },
        blending_params={
            'feather': not args.no_feather,
            'smoothing_sigma': args.smoothing,
        },
        crop=args.crop,
    )

    start_time = time.time()

    try:
        result, debug_info = compositor.composite(
            images, mappings, canvas_size=args.canvas, return_debug_info=True
        )
    except Exception as e:
        print(f"\nError during compositing: {str(e)}")
        return 1

    elapsed_time = time.time() - start_time

    print("\nSaving mosaic...")
    write_image(args.output, result)

    if args.save_accumulator:
        np.save(args.save_accumulator, debug_info['accumulator'])
        print(f"  Accumulator saved to: {args.save_accumulator}")

    print("\nSuccess!")
    print(f"  Mosaic saved to: {args.output}")
    print(f"  Final size: {result.shape}")
    print(f"  Processing time: {elapsed_time:.2f} seconds")

    return 0


if __name__ == '__main__':
    sys.exit(main())
