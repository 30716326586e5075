"""
Route Geometry - distances and positions along a geographic path

================================================================================
GREAT CIRCLE DISTANCE
================================================================================
Segment lengths are measured with the Haversine formula:

    a = sin²(Δφ/2) + cos(φ₁) × cos(φ₂) × sin²(Δλ/2)
    c = 2 × arcsin(√a)
    d = R × c

    Where:
        φ = latitude (radians)
        λ = longitude (radians)
        R = Earth mean radius (6371 km)

================================================================================
INTERPOLATION
================================================================================
A position along a path is found by distance fraction, then placed on the
containing edge with a planar lerp of latitude/longitude:

    target = progress × L_path
    edge   = first i with cum[i] <= target < cum[i+1]
    f      = (target - cum[i]) / (cum[i+1] - cum[i])     (0 for empty edges)
    point  = P[i] + f × (P[i+1] - P[i])

This is an approximation: the lerp does not follow the great circle, which is
fine for the short edges of a driven route.
"""

from typing import Sequence, Tuple
import math

import numpy as np

EARTH_RADIUS_KM = 6371.0

Coordinate = Tuple[float, float]


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate great circle distance between two points using Haversine formula

    Args:
        lat1, lon1: First point (decimal degrees)
        lat2, lon2: Second point (decimal degrees)

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) *
         math.sin(delta_lon / 2) ** 2)
    # Rounding can push a a hair above 1 for antipodal points
    c = 2 * math.asin(math.sqrt(min(1.0, a)))

    return EARTH_RADIUS_KM * c


def edge_lengths(path: Sequence[Coordinate]) -> np.ndarray:
    """
    Great circle length of every edge of ``path`` (vectorised Haversine).

    Returns:
        Array of ``len(path) - 1`` distances in kilometers
    """
    points = np.asarray(path, dtype=float).reshape(-1, 2)
    if len(points) < 2:
        return np.zeros(0)

    lat = np.radians(points[:, 0])
    lon = np.radians(points[:, 1])
    delta_lat = np.diff(lat)
    delta_lon = np.diff(lon)

    a = (np.sin(delta_lat / 2) ** 2 +
         np.cos(lat[:-1]) * np.cos(lat[1:]) *
         np.sin(delta_lon / 2) ** 2)
    c = 2 * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))

    return EARTH_RADIUS_KM * c


def path_distance(path: Sequence[Coordinate]) -> float:
    """Total along-path distance in kilometers."""
    return float(edge_lengths(path).sum())


def cumulative_distances(path: Sequence[Coordinate]) -> np.ndarray:
    """Distance from the first point to every point, starting at 0."""
    return np.concatenate(([0.0], np.cumsum(edge_lengths(path))))


def interpolate(path: Sequence[Coordinate], progress: float) -> Coordinate:
    """
    Position at fraction ``progress`` of the along-path distance.

    Args:
        path: Ordered (lat, lon) points, at least one
        progress: 0.0 (first point) to 1.0 (last point); clamped

    Returns:
        Interpolated (latitude, longitude)
    """
    first = (float(path[0][0]), float(path[0][1]))
    last = (float(path[-1][0]), float(path[-1][1]))

    if progress <= 0 or len(path) < 2:
        return first
    if progress >= 1:
        return last

    cumulative = cumulative_distances(path)
    total = cumulative[-1]
    if total <= 0:
        # Every point is the same place
        return first

    target = progress * total
    edge = int(np.searchsorted(cumulative, target, side='right')) - 1
    edge = max(0, min(edge, len(path) - 2))

    edge_start = cumulative[edge]
    edge_length = cumulative[edge + 1] - edge_start
    fraction = (target - edge_start) / edge_length if edge_length > 0 else 0.0

    lat1, lon1 = path[edge]
    lat2, lon2 = path[edge + 1]

    return (
        float(lat1 + (lat2 - lat1) * fraction),
        float(lon1 + (lon2 - lon1) * fraction),
    )
