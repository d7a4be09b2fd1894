import numpy as np
from rasterio.crs import CRS
from rasterio.errors import CRSError
from rasterio.warp import transform

from .errors import ConfigurationError

WGS84 = "EPSG:4326"


def parse_crs(text):
    try:
        return CRS.from_user_input(text)
    except CRSError as exc:
        raise ConfigurationError(f"Invalid coordinate reference system {text!r}: {exc}") from exc


def utm_crs_for(lon, lat):
    """WGS84 / UTM zone containing the given point, e.g. "EPSG:32633"."""
    zone = int((lon + 180.0) // 6.0) % 60 + 1
    base = 32600 if lat >= 0 else 32700
    return f"EPSG:{base + zone}"


def project(lon, lat, crs, src_crs=WGS84):
    lon = np.asarray(lon, dtype=np.float64)
    lat = np.asarray(lat, dtype=np.float64)
    if lon.size == 0:
        return lon.copy(), lat.copy()
    xs, ys = transform(parse_crs(src_crs), parse_crs(crs), lon.tolist(), lat.tolist())
    return np.asarray(xs, dtype=np.float64), np.asarray(ys, dtype=np.float64)
