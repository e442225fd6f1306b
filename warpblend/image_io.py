"""
Image and mapping I/O utilities using PIL (Pillow).
"""

import json

import numpy as np
from PIL import Image

from .mapping import as_mapping


def read_image(filepath):
    """
    Read image from file.

    Args:
        filepath: Path to image file

    Returns:
        Image as numpy array (H x W x C) for color or (H x W) for grayscale
    """
    try:
        img = Image.open(filepath)

        # Alpha is replaced by the blender's own weight channel
        if img.mode != 'RGB' and img.mode != 'L':
            img = img.convert('RGB')

        return np.array(img)

    except Exception as e:
        raise IOError(f"Failed to read image from {filepath}: {str(e)}") from e


def write_image(filepath, image):
    """
    Write image to file.

    Args:
        filepath: Path to save image
        image: Image as numpy array (H x W), (H x W x 1) or (H x W x 3)
    """
    try:
        image = np.asarray(image)

        if image.ndim == 3 and image.shape[2] == 1:
            image = image[:, :, 0]

        if image.dtype != np.uint8:
            image = np.clip(np.rint(image), 0, 255).astype(np.uint8)

        Image.fromarray(image).save(filepath)

    except Exception as e:
        raise IOError(f"Failed to write image to {filepath}: {str(e)}") from e


def read_images(filepaths):
    """
    Read multiple images.

    Args:
        filepaths: List of image file paths

    Returns:
        List of images as numpy arrays
    """
    return [read_image(filepath) for filepath in filepaths]


def resize_image(image, scale=1.0):
    """
    Resize image by a scale factor.

    Args:
        image: Input image (uint8)
        scale: Scale factor

    Returns:
        Resized image
    """
    h, w = image.shape[:2]
    new_size = (max(1, int(w * scale)), max(1, int(h * scale)))

    img = Image.fromarray(image)
    img_resized = img.resize(new_size, Image.LANCZOS)

    return np.array(img_resized)


def read_mappings(filepath):
    """
    Read mappings from a JSON file.

    The file holds a list with one entry per image: a 3x3 matrix, 9 values,
    or 2/6/8 mapping parameters.

    Returns:
        List of Mapping
    """
    try:
        with open(filepath) as f:
            entries = json.load(f)
    except (OSError, ValueError) as e:
        raise IOError(f"Failed to read mappings from {filepath}: {str(e)}") from e

    if not isinstance(entries, list):
        raise ValueError(f"{filepath}: expected a list of mappings")

    return [as_mapping(entry) for entry in entries]


def write_mappings(filepath, mappings):
    """Write mappings to a JSON file as 3x3 matrices."""
    entries = [as_mapping(m).mat.tolist() for m in mappings]

    try:
        with open(filepath, 'w') as f:
            json.dump(entries, f, indent=2)
    except OSError as e:
        raise IOError(f"Failed to write mappings to {filepath}: {str(e)}") from e
