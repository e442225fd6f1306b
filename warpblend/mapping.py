"""
Projective mappings (3x3 homographies) between image planes.

A Mapping handed to the kernel sends destination (canvas) coordinates to
source coordinates. Estimating mappings is left to the caller; this module
only builds, composes and inspects them.
"""

import numpy as np
from scipy.interpolate import CubicSpline


# Number of free parameters for each kind of transformation
TRANSFORMATION_KINDS = {
    'unknown': 0,
    'translational': 2,
    'affine': 6,
    'projective': 8,
}


class Mapping:
    """
    3x3 projective transform acting on homogeneous (x, y, 1) points.

    Parameters follow the "p + identity" convention: a parameter vector of
    zeros is the identity mapping.
    """

    def __init__(self, mat, kind='projective'):
        """
        Initialize Mapping.

        Args:
            mat: 3x3 matrix (anything numpy can reshape to 3x3)
            kind: One of 'translational', 'affine', 'projective', 'unknown'
        """
        mat = np.asarray(mat, dtype=np.float32)
        if mat.size != 9:
            raise ValueError(f"Mapping needs 9 values, got {mat.size}")
        if kind not in TRANSFORMATION_KINDS:
            raise ValueError(f"Unknown transformation kind: {kind}")

        self.mat = mat.reshape(3, 3)
        self.kind = kind
        self.is_identity = bool(np.allclose(self.mat, np.eye(3), rtol=0, atol=1e-8))

    def __repr__(self):
        return f"Mapping(kind={self.kind!r}, mat={self.mat.tolist()})"

    @classmethod
    def from_matrix(cls, mat, kind='projective'):
        return cls(mat, kind)

    @classmethod
    def from_params(cls, params):
        """
        Build a mapping from its free parameters.

        Args:
            params: 2 values (dx, dy), 6 affine or 8 projective parameters

        Returns:
            Mapping of the matching kind
        """
        p = [float(v) for v in params]

        if len(p) == 2:
            dx, dy = p
            full = [1.0, 0.0, dx, 0.0, 1.0, dy, 0.0, 0.0, 1.0]
            kind = 'translational'
        elif len(p) == 6:
            full = [p[0] + 1.0, p[2], p[4], p[1], p[3] + 1.0, p[5], 0.0, 0.0, 1.0]
            kind = 'affine'
        elif len(p) == 8:
            full = [p[0] + 1.0, p[2], p[4], p[1], p[3] + 1.0, p[5], p[6], p[7], 1.0]
            kind = 'projective'
        else:
            raise ValueError(
                f"Expected 2, 6 or 8 mapping parameters, got {len(p)}"
            )

        return cls(np.array(full).reshape(3, 3), kind)

    @classmethod
    def shift(cls, dx, dy):
        return cls.from_params([dx, dy])

    @classmethod
    def scale(cls, sx, sy):
        return cls.from_params([sx - 1.0, 0.0, 0.0, sy - 1.0, 0.0, 0.0])

    @classmethod
    def identity(cls):
        return cls.from_params([0.0, 0.0])

    def to_buffer(self):
        """Row-major 9 x float32 buffer, as uploaded to the kernel."""
        return np.ascontiguousarray(self.mat, dtype=np.float32).ravel()

    def get_params(self):
        """
        Free parameters of this mapping for its kind.

        Returns:
            List of 2, 6 or 8 floats
        """
        p = (self.mat / self.mat[2, 2]).ravel().tolist()

        if self.kind == 'translational':
            return [p[2], p[5]]
        if self.kind == 'affine':
            return [p[0] - 1.0, p[3], p[1], p[4] - 1.0, p[2], p[5]]
        if self.kind == 'projective':
            return self.get_params_full()
        raise ValueError("Transformation kind cannot be unknown")

    def get_params_full(self):
        """All 8 projective parameters, regardless of kind."""
        p = (self.mat / self.mat[2, 2]).ravel().tolist()
        return [p[0] - 1.0, p[3], p[1], p[4] - 1.0, p[2], p[5], p[6], p[7]]

    def inverse(self):
        """
        Inverse mapping.

        Raises:
            ValueError: If the matrix is singular
        """
        try:
            inv = np.linalg.inv(self.mat.astype(np.float64))
        except np.linalg.LinAlgError as e:
            raise ValueError(f"Cannot invert mapping: {e}") from e

        return Mapping(inv, self.kind)

    def transform(self, lhs=None, rhs=None):
        """
        Compose as lhs @ self @ rhs.

        Args:
            lhs: Mapping applied after this one (optional)
            rhs: Mapping applied before this one (optional)

        Returns:
            Composed mapping whose kind is the most general of the three
        """
        lhs_mat = lhs.mat if lhs is not None else np.eye(3)
        rhs_mat = rhs.mat if rhs is not None else np.eye(3)

        kinds = [self.kind]
        kinds += [m.kind for m in (lhs, rhs) if m is not None]
        kind = max(kinds, key=lambda k: TRANSFORMATION_KINDS[k])

        mat = lhs_mat.astype(np.float64) @ self.mat.astype(np.float64) @ rhs_mat
        return Mapping(mat, kind)

    def rescale(self, scale):
        """
        Same mapping expressed for canvas and source both resized by `scale`.
        """
        return self.transform(
            lhs=Mapping.scale(scale, scale),
            rhs=Mapping.scale(1.0 / scale, 1.0 / scale),
        )

    def warp_points(self, points):
        """
        Apply the mapping to points.

        Args:
            points: Points to transform (N x 2), as (x, y)

        Returns:
            Transformed points (N x 2), float32
        """
        points = np.asarray(points, dtype=np.float32).reshape(-1, 2)

        if self.is_identity:
            return points

        # Convert to homogeneous coordinates
        points_homogeneous = np.hstack([points, np.ones((len(points), 1), dtype=np.float32)])
        warped = (self.mat @ points_homogeneous.T).T

        # Clamp the denominator to stay away from the line at infinity
        d = np.maximum(warped[:, 2:3], 1e-8)
        return (warped[:, :2] / d).astype(np.float32)

    def corners(self, size):
        """
        Corners of a source frame of `size` = (width, height) on the canvas.

        The mapping sends canvas points to source points, so the source
        corners are pushed through its inverse.
        """
        w, h = size
        corners = np.array([[0, 0], [w, 0], [w, h], [0, h]], dtype=np.float32)
        return self.inverse().warp_points(corners)

    def extent(self, size):
        """
        Bounding box of the warped frame.

        Returns:
            min_coords: (x_min, y_min)
            max_coords: (x_max, y_max)
        """
        corners = self.corners(size)
        return corners.min(axis=0), corners.max(axis=0)

    @staticmethod
    def maximum_extent(maps, sizes):
        """
        Canvas that contains every warped frame.

        Args:
            maps: List of mappings (canvas -> source)
            sizes: One (width, height) per mapping, or a single pair for all

        Returns:
            extent: (width, height) of the union bounding box
            offset: Translation taking canvas coordinates to the frame of
                the mappings, to be applied before each of them
        """
        if len(maps) == 0:
            raise ValueError("No mappings provided")

        sizes = list(sizes)
        if len(sizes) == 2 and np.isscalar(sizes[0]):
            sizes = [tuple(sizes)] * len(maps)
        if len(sizes) != len(maps):
            raise ValueError(
                f"Got {len(sizes)} frame sizes for {len(maps)} mappings"
            )

        extents = [m.extent(size) for m, size in zip(maps, sizes)]
        min_coords = np.min([e[0] for e in extents], axis=0)
        max_coords = np.max([e[1] for e in extents], axis=0)

        extent = max_coords - min_coords
        offset = Mapping.from_params(min_coords.tolist())
        return extent, offset

    @staticmethod
    def interpolate(ts, maps, query):
        """
        Interpolate mappings over time with a cubic spline.

        Args:
            ts: Timestamps of `maps` (strictly increasing)
            maps: Mappings known at `ts`
            query: Scalar or array of timestamps to evaluate

        Returns:
            Mapping for a scalar query, list of mappings otherwise
        """
        if len(ts) != len(maps):
            raise ValueError("Need exactly one timestamp per mapping")

        params = np.array([m.get_params_full() for m in maps], dtype=np.float64)
        spline = CubicSpline(np.asarray(ts, dtype=np.float64), params, axis=0)

        if np.ndim(query) == 0:
            return Mapping.from_params(spline(float(query)).tolist())

        return [Mapping.from_params(p.tolist()) for p in spline(np.asarray(query))]


def as_mapping(value):
    """
    Coerce a Mapping, 3x3 matrix, 9 floats or 2/6/8 params into a Mapping.
    """
    if isinstance(value, Mapping):
        return value

    arr = np.asarray(value, dtype=np.float64)
    if arr.size == 9:
        return Mapping(arr)
    return Mapping.from_params(arr.ravel().tolist())
