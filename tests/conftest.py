import numpy as np
import pandas as pd
import pytest
import rasterio
from rasterio.transform import from_origin

from gprproc.gpr import GPR, GPRMeta, TraceMetadata

RAD_TEMPLATE = """SAMPLES:{samples}
FREQUENCY:{frequency:.6f}
FREQUENCY STEPS:20
SIGNAL POSITION:0.000000
DISTANCE FLAG:0
TIME FLAG:1
TIME INTERVAL:{time_interval:.6f}
DISTANCE INTERVAL:0.000000
OPERATOR:
CUSTOMER:
SITE:
ANTENNAS:{antenna}
ANTENNA SEPARATION:0.140000
COMMENT:
TIMEWINDOW:{time_window:.6f}
LAST TRACE:{n_traces}
"""


def synthetic_data(n_samples=64, n_traces=40, seed=0):
    rng = np.random.default_rng(seed)
    data = rng.normal(0.0, 1.0, size=(n_samples, n_traces))
    # Direct wave and a flat reflector
    data[5] += 200.0
    data[30] += 40.0
    return data.astype(np.float32)


@pytest.fixture
def make_gpr():
    def factory(n_samples=64, n_traces=40, positions=True, start_time=1.6e9, seed=0):
        data = synthetic_data(n_samples, n_traces, seed)
        metadata = GPRMeta(
            samples=n_samples,
            frequency=1000.0,
            time_window=n_samples * 1.0,
            antenna="800 MHz shielded",
            antenna_mhz=800.0,
            antenna_separation=0.14,
            time_interval=0.5,
            last_trace=n_traces,
            filepath="synthetic.rad",
        )
        traces = TraceMetadata.regular(n_traces, start_time, 0.5, 800.0)
        if positions:
            traces.frame["x"] = np.arange(n_traces) * 0.5
            traces.frame["y"] = 0.0
            traces.frame["z"] = 100.0 + np.linspace(0.0, 2.0, n_traces)
            traces.update_distance()
        return GPR(data, metadata, traces, name="synthetic")

    return factory


@pytest.fixture
def write_ramac(tmp_path):
    def factory(stem="DAT_0001", n_samples=32, n_traces=20, start="2021-06-01 10:00:00", with_cor=True, directory=None):
        directory = directory or tmp_path
        data = (synthetic_data(n_samples, n_traces) * 10).astype("<i2")
        (directory / f"{stem}.rad").write_text(
            RAD_TEMPLATE.format(
                samples=n_samples,
                frequency=1000.0,
                time_interval=0.5,
                antenna="800 MHz SHIELDED",
                time_window=n_samples * 1.0,
                n_traces=n_traces,
            ),
            encoding="ascii",
        )
        # Trace-major on disk
        data.T.tofile(directory / f"{stem}.rd3")

        if with_cor:
            start_time = pd.Timestamp(start)
            lines = []
            for i in range(n_traces):
                stamp = start_time + pd.Timedelta(seconds=i)
                lines.append(
                    f"{i + 1}\t{stamp:%Y-%m-%d}\t{stamp:%H:%M:%S}\t"
                    f"{78.2 + i * 1e-5:.8f}\tN\t{15.6 + i * 1e-5:.8f}\tE\t{120.0 + i * 0.1:.2f}\tM\t1.2"
                )
            (directory / f"{stem}.cor").write_text("\n".join(lines) + "\n", encoding="ascii")
        return directory / f"{stem}.rad", data

    return factory


@pytest.fixture
def write_dem(tmp_path):
    """GeoTIFF in EPSG:4326 covering 15-17 E, 77-79 N, with a nodata corner."""

    def factory(height=50.0, name="dem.tif"):
        path = tmp_path / name
        values = np.full((200, 200), height, dtype=np.float32)
        values[:10, :10] = -9999.0
        with rasterio.open(
            path,
            "w",
            driver="GTiff",
            height=200,
            width=200,
            count=1,
            dtype="float32",
            crs="EPSG:4326",
            transform=from_origin(15.0, 79.0, 0.01, 0.01),
            nodata=-9999.0,
        ) as dataset:
            dataset.write(values, 1)
        return path

    return factory
