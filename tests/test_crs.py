import math

import numpy as np
import pytest

from popradius.spatial.crs import EARTH_RADIUS_M, MAX_LATITUDE_DEG, lonlat_to_merc, merc_to_lonlat, project_bbox


def test_known_values() -> None:
    x, y = lonlat_to_merc(0.0, 0.0)
    assert x == pytest.approx(0.0)
    assert y == pytest.approx(0.0, abs=1e-9)

    x, _ = lonlat_to_merc(180.0, 0.0)
    assert x == pytest.approx(math.pi * EARTH_RADIUS_M)


def test_round_trip_within_safe_latitudes() -> None:
    lons = np.linspace(-180.0, 180.0, 37)
    lats = np.linspace(-85.0, 85.0, 35)
    grid_lon, grid_lat = np.meshgrid(lons, lats)

    x, y = lonlat_to_merc(grid_lon.ravel(), grid_lat.ravel())
    back_lon, back_lat = merc_to_lonlat(x, y)

    assert np.max(np.abs(back_lon - grid_lon.ravel())) <= 1e-6
    assert np.max(np.abs(back_lat - grid_lat.ravel())) <= 1e-6


def test_poles_are_clamped_to_finite_values() -> None:
    _, y_pole = lonlat_to_merc(0.0, 90.0)
    _, y_max = lonlat_to_merc(0.0, MAX_LATITUDE_DEG)
    assert math.isfinite(y_pole)
    assert y_pole == pytest.approx(y_max)
    # At the clamp latitude the projection is square.
    assert y_max == pytest.approx(math.pi * EARTH_RADIUS_M, rel=1e-9)


def test_scalar_input_returns_floats() -> None:
    x, y = lonlat_to_merc(13.4, 52.5)
    assert isinstance(x, float) and isinstance(y, float)
    lon, lat = merc_to_lonlat(x, y)
    assert isinstance(lon, float) and isinstance(lat, float)


def test_project_bbox_orders_corners() -> None:
    min_x, min_y, max_x, max_y = project_bbox((5.0, 47.0, 15.0, 55.0))
    assert min_x < max_x
    assert min_y < max_y
    assert (min_x, min_y) == pytest.approx(lonlat_to_merc(5.0, 47.0))
    assert (max_x, max_y) == pytest.approx(lonlat_to_merc(15.0, 55.0))
