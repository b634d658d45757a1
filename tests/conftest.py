import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from peakresolve import Curve, Peak


def gaussian(x, amplitude, center, sigma):
    return amplitude * np.exp(-((x - center) ** 2) / (2.0 * sigma ** 2))


@pytest.fixture
def single_peak_curve():
    rng = np.random.default_rng(0)
    x = np.arange(0.0, 10.0, 0.02)
    y = gaussian(x, 100.0, 5.0, 0.5) + rng.normal(0.0, 0.2, x.size)
    return Curve(x, y, curve_id="single")


@pytest.fixture
def separated_curve():
    rng = np.random.default_rng(1)
    x = np.arange(0.0, 10.0, 0.02)
    y = (gaussian(x, 100.0, 3.0, 0.3) + gaussian(x, 60.0, 7.0, 0.3)
         + rng.normal(0.0, 0.2, x.size))
    return Curve(x, y, curve_id="separated")


@pytest.fixture
def overlapped_curve():
    rng = np.random.default_rng(7)
    x = np.arange(0.0, 10.0 + 1e-9, 0.05)
    y = (gaussian(x, 100.0, 5.0, 1.0) + gaussian(x, 80.0, 5.3, 0.8)
         + rng.uniform(-1.0, 1.0, x.size))
    return Curve(x, y, curve_id="overlapped")


@pytest.fixture
def noisy_overlap():
    rng = np.random.default_rng(11)
    x = np.arange(0.0, 30.0, 0.05)
    y = (gaussian(x, 50.0, 14.8, 1.0) + gaussian(x, 50.0, 15.2, 1.0)
         + rng.normal(0.0, 12.0, x.size))
    candidates = [Peak(14.8, amplitude=50.0, fwhm=2.355),
                  Peak(15.2, amplitude=50.0, fwhm=2.355)]
    return Curve(x, y, curve_id="noisy"), candidates
