"""
Route progress estimation.

Maps a raw GPS fix onto a route polyline: distance covered, percentage,
time to the next stop and to the destination, and whether the fix is
implausibly far from the route.

Pure functions only; no database access.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from transit_backend.app.core.config import settings

EARTH_RADIUS_M = 6_371_000.0


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two points.

    Returns:
        Distance in meters
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


@dataclass
class RouteGeometry:
    """Ordered route points with cumulative haversine distances."""
    points: List[Tuple[float, float]]
    cumulative_m: List[float]
    scheduled_speed_kmh: float

    @property
    def total_m(self) -> float:
        return self.cumulative_m[-1] if self.cumulative_m else 0.0

    def point_at(self, distance_m: float) -> Tuple[float, float, float]:
        """
        Interpolate the (lat, lng, heading) at a distance along the route.

        Distances outside the route are clamped to its ends.
        """
        if len(self.points) == 1:
            lat, lng = self.points[0]
            return lat, lng, 0.0

        distance_m = min(max(distance_m, 0.0), self.total_m)
        for i in range(len(self.points) - 1):
            seg_start, seg_end = self.cumulative_m[i], self.cumulative_m[i + 1]
            if distance_m <= seg_end or i == len(self.points) - 2:
                seg_len = seg_end - seg_start
                t = (distance_m - seg_start) / seg_len if seg_len > 0 else 0.0
                lat1, lng1 = self.points[i]
                lat2, lng2 = self.points[i + 1]
                return (
                    lat1 + t * (lat2 - lat1),
                    lng1 + t * (lng2 - lng1),
                    initial_bearing(lat1, lng1, lat2, lng2),
                )
        lat, lng = self.points[-1]
        return lat, lng, 0.0


@dataclass
class ProgressEstimate:
    """Result of projecting a fix onto a route."""
    current_waypoint_index: int
    distance_covered_m: float
    progress_percentage: float
    eta_next_stop_seconds: float
    minutes_to_destination: float
    distance_from_route_m: float
    off_route: bool


def initial_bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compass bearing in degrees (0-360) from the first point towards the second."""
    lat1_rad, lat2_rad = math.radians(lat1), math.radians(lat2)
    dlon = math.radians(lon2 - lon1)
    x = math.sin(dlon) * math.cos(lat2_rad)
    y = math.cos(lat1_rad) * math.sin(lat2_rad) - math.sin(lat1_rad) * math.cos(lat2_rad) * math.cos(dlon)
    return (math.degrees(math.atan2(x, y)) + 360) % 360


def scheduled_speed_kmh(distance_km: Optional[float], duration_minutes: Optional[float]) -> float:
    """Average scheduled speed of a route, or the configured fallback."""
    if distance_km and duration_minutes and distance_km > 0 and duration_minutes > 0:
        return distance_km / (duration_minutes / 60.0)
    return settings.default_average_speed_kmh


def build_route_geometry(route) -> Optional[RouteGeometry]:
    """
    Build the polyline for a Route row: start, waypoints by "order", end.

    Returns None when the route has fewer than two usable points.
    """
    points: List[Tuple[float, float]] = []
    if route.start_lat is not None and route.start_lng is not None:
        points.append((route.start_lat, route.start_lng))

    waypoints = sorted(route.waypoints or [], key=lambda wp: wp.get("order", 0))
    for wp in waypoints:
        if wp.get("lat") is None or wp.get("lng") is None:
            continue
        points.append((float(wp["lat"]), float(wp["lng"])))

    if route.end_lat is not None and route.end_lng is not None:
        points.append((route.end_lat, route.end_lng))

    if len(points) < 2:
        return None

    cumulative = [0.0]
    for (lat1, lng1), (lat2, lng2) in zip(points, points[1:]):
        cumulative.append(cumulative[-1] + haversine_m(lat1, lng1, lat2, lng2))

    return RouteGeometry(
        points=points,
        cumulative_m=cumulative,
        scheduled_speed_kmh=scheduled_speed_kmh(route.distance_km, route.estimated_duration_minutes),
    )


def _project_onto_segment(
    lat: float, lon: float,
    lat1: float, lon1: float,
    lat2: float, lon2: float
) -> Tuple[float, float]:
    """
    Project a point onto one segment using a local planar approximation.

    Returns:
        (t in [0, 1] along the segment, haversine distance to the projection)
    """
    avg_lat = math.radians((lat1 + lat2) / 2)
    seg_x = (lon2 - lon1) * math.cos(avg_lat)
    seg_y = lat2 - lat1
    seg_length_sq = seg_x ** 2 + seg_y ** 2

    if seg_length_sq < 1e-18:  # Degenerate segment
        return 0.0, haversine_m(lat, lon, lat1, lon1)

    dx = (lon - lon1) * math.cos(avg_lat)
    dy = lat - lat1
    t = max(0.0, min(1.0, (dx * seg_x + dy * seg_y) / seg_length_sq))

    proj_lat = lat1 + t * (lat2 - lat1)
    proj_lon = lon1 + t * (lon2 - lon1)
    return t, haversine_m(lat, lon, proj_lat, proj_lon)


def estimate_progress(
    geometry: RouteGeometry,
    latitude: float,
    longitude: float,
    speed_kmh: Optional[float],
    off_route_threshold_m: Optional[float] = None,
) -> ProgressEstimate:
    """
    Estimate route progress for a single fix.

    - current_waypoint_index: nearest route point by haversine
    - distance_covered_m: cumulative distance to the best-fitting segment
      plus the projected offset along it
    - progress_percentage: clamped to [0, 100]
    - eta_next_stop_seconds: remaining distance to the next route point
      divided by the reported speed, or the scheduled speed when the
      reported one is missing or zero
    - off_route: distance to the polyline exceeds the threshold
    """
    if off_route_threshold_m is None:
        off_route_threshold_m = settings.off_route_threshold_m

    points = geometry.points

    nearest_index = min(
        range(len(points)),
        key=lambda i: haversine_m(latitude, longitude, points[i][0], points[i][1])
    )

    best_segment = 0
    best_t = 0.0
    best_distance = float("inf")
    for i in range(len(points) - 1):
        t, distance = _project_onto_segment(
            latitude, longitude, points[i][0], points[i][1], points[i + 1][0], points[i + 1][1]
        )
        if distance < best_distance:
            best_segment, best_t, best_distance = i, t, distance

    segment_length = geometry.cumulative_m[best_segment + 1] - geometry.cumulative_m[best_segment]
    total = geometry.total_m
    distance_covered = min(geometry.cumulative_m[best_segment] + best_t * segment_length, total)

    if total > 0:
        progress = max(0.0, min(100.0, distance_covered / total * 100.0))
    else:
        progress = 0.0

    effective_speed = speed_kmh if speed_kmh and speed_kmh > 0 else geometry.scheduled_speed_kmh
    meters_per_second = effective_speed * 1000.0 / 3600.0

    next_stop_m = next((c for c in geometry.cumulative_m if c > distance_covered), None)
    if next_stop_m is None or meters_per_second <= 0:
        eta_next_stop = 0.0
    else:
        eta_next_stop = (next_stop_m - distance_covered) / meters_per_second

    if meters_per_second > 0:
        minutes_to_destination = (total - distance_covered) / meters_per_second / 60.0
    else:
        minutes_to_destination = 0.0

    return ProgressEstimate(
        current_waypoint_index=nearest_index,
        distance_covered_m=round(distance_covered, 1),
        progress_percentage=round(progress, 2),
        eta_next_stop_seconds=round(eta_next_stop, 1),
        minutes_to_destination=round(minutes_to_destination, 1),
        distance_from_route_m=round(best_distance, 1),
        off_route=best_distance > off_route_threshold_m,
    )
