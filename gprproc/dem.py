import logging

import numpy as np
import rasterio
from rasterio.errors import RasterioIOError
from rasterio.warp import transform

from .coords import WGS84
from .errors import LoadError

logger = logging.getLogger(__name__)


def elevation_at(dem_path, lon, lat):
    """
    Sample the first band of a DEM at WGS84 positions.

    Positions outside the raster or on nodata cells give NaN.
    """
    lon = np.asarray(lon, dtype=np.float64)
    lat = np.asarray(lat, dtype=np.float64)
    try:
        dataset = rasterio.open(dem_path)
    except RasterioIOError as exc:
        raise LoadError(f"Could not open DEM {dem_path}: {exc}") from exc

    with dataset:
        if dataset.crs is not None:
            xs, ys = transform(WGS84, dataset.crs, lon.tolist(), lat.tolist())
        else:
            xs, ys = lon.tolist(), lat.tolist()
        xs = np.asarray(xs, dtype=np.float64)
        ys = np.asarray(ys, dtype=np.float64)

        heights = np.array(
            [value[0] for value in dataset.sample(zip(xs, ys), indexes=1)],
            dtype=np.float64,
        )
        if dataset.nodata is not None:
            heights[heights == dataset.nodata] = np.nan
        bounds = dataset.bounds
        outside = (xs < bounds.left) | (xs > bounds.right) | (ys < bounds.bottom) | (ys > bounds.top)
        heights[outside] = np.nan

    missing = int(np.count_nonzero(~np.isfinite(heights)))
    if missing:
        logger.warning("%d of %d positions have no DEM value", missing, heights.size)
    return heights
