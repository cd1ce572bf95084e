from datetime import datetime, timedelta

import numpy as np
import pytest

from physio_foundation.models.types import Sample

START = datetime(2025, 1, 1, 6, 0, 0)

# Multiplicative HR noise: residuals have the same relative size everywhere,
# and the period-4 pattern is orthogonal to a 60 s power cycle.
NOISE_PATTERN = np.array([1.0, 1.0, -1.0, -1.0])
NOISE_FRACTION = 0.008


def build_samples(power, hr, t0=0):
    return [
        Sample(
            timestamp=START + timedelta(seconds=t0 + i),
            seconds=float(t0 + i),
            power=float(p),
            heart_rate=float(h),
        )
        for i, (p, h) in enumerate(zip(power, hr))
    ]


def sinusoid_power(n, base=150.0, amplitude=30.0, period=60, t0=0):
    t = np.arange(t0, t0 + n)
    return base + amplitude * np.sin(2 * np.pi * t / period)


def coupled_hr(power, slope=0.4, intercept=70.0, t0=0):
    noise = NOISE_PATTERN[(np.arange(t0, t0 + len(power))) % 4]
    return (slope * np.asarray(power) + intercept) * (1.0 + NOISE_FRACTION * noise)


@pytest.fixture
def make_samples():
    return build_samples


@pytest.fixture
def steady_samples():
    """10 minutes of cyclic power with heart rate tightly coupled to it."""
    power = sinusoid_power(600)
    return build_samples(power, coupled_hr(power))


@pytest.fixture
def offset_blocks():
    """Two back-to-back 90 s blocks; the second has heart rate 25 bpm higher at the same power."""
    power = sinusoid_power(180)
    hr = np.concatenate(
        [
            coupled_hr(power[:90], intercept=70.0),
            coupled_hr(power[90:], intercept=95.0, t0=90),
        ]
    )
    return build_samples(power, hr)


@pytest.fixture
def stable_then_drift():
    """5 minutes coupled, then 5 minutes at constant power with heart rate climbing 0.2 bpm/s."""
    power_a = sinusoid_power(300)
    hr_a = coupled_hr(power_a)
    power_b = np.full(300, 150.0)
    hr_b = 130.0 + 0.2 * np.arange(300)
    return build_samples(np.concatenate([power_a, power_b]), np.concatenate([hr_a, hr_b]))


@pytest.fixture
def raw_records():
    """1 Hz decoded records as the FIT loader returns them."""
    records = []
    for i in range(120):
        records.append(
            {
                "timestamp": START + timedelta(seconds=i),
                "power": 200.0 + (i % 10),
                "heart_rate": 140.0 + (i % 5),
                "cadence": 90.0,
                "speed": 9.0,
                "distance": 9.0 * i,
                "temperature": 20.0,
                "altitude": 100.0,
                "position": (45.0, 7.0),
            }
        )
    return records
