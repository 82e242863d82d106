# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import cupy as cp
import numpy as np
import pytest

from cuguided import ConfigurationError, Context, KernelResourceError
from cuguided.primitives import Scan
from cuguided.primitives._scan import _scan_groups, _scan_reference


@pytest.fixture(scope="module")
def context():
    return Context()


def _random_image(shape, seed=0):
    rng = np.random.default_rng(seed)
    # small positive values, as in an 8-bit image scaled by 1e-6
    return (rng.integers(1, 256, size=shape) * 1e-6).astype(np.float32)


@pytest.mark.parametrize(
    "width, group_size, expected",
    [
        (64, 32, 1),
        (256, 32, 1),
        (260, 32, 4),
        (640, 32, 4),
        (4096, 32, 16),
        (4100, 32, 20),
        (640, 128, 1),
    ],
)
def test_scan_groups(width, group_size, expected):
    assert _scan_groups(width, group_size) == expected


@pytest.mark.parametrize(
    "shape",
    [(1, 4), (4, 64), (8, 256), (16, 640), (3, 1000), (2, 4096), (480, 640)],
)
def test_scan_matches_cumsum(context, shape):
    image = _random_image(shape)
    height, width = shape
    scan = Scan(context)
    scan.configure(width, height)
    out = scan.run_once({Scan.Memory.D_IN: image})
    cp.testing.assert_allclose(
        out, _scan_reference(image), rtol=1e-5, atol=5e-6
    )


@pytest.mark.parametrize("group_size", [32, 64, 256, 512])
def test_group_sizes(context, group_size):
    image = _random_image((4, 8192), seed=group_size)
    scan = Scan(context, group_size=group_size)
    scan.configure(8192, 4)
    out = scan.run_once({"D_IN": image})
    cp.testing.assert_allclose(
        out, _scan_reference(image), rtol=1e-5, atol=5e-6
    )


def test_ones_are_exact(context):
    image = cp.ones((2, 2048), dtype=cp.float32)
    scan = Scan(context)
    scan.configure(2048, 2)
    out = scan.run_once({"D_IN": image})
    expected = cp.broadcast_to(cp.arange(1, 2049, dtype=cp.float32), (2, 2048))
    cp.testing.assert_array_equal(out, expected)


def test_scaling(context):
    image = _random_image((4, 640))
    scan = Scan(context, scaling=1e3)
    scan.configure(640, 4)
    out = scan.run_once({"D_IN": image})
    cp.testing.assert_allclose(
        out, _scan_reference(image, 1e3), rtol=1e-5, atol=5e-3
    )

    # parameter updates apply to the next run without reconfiguring
    scan.scaling = 1.0
    out = scan.run_once({"D_IN": image})
    cp.testing.assert_allclose(
        out, _scan_reference(image), rtol=1e-5, atol=5e-6
    )


def test_group_sum_tasks(context):
    scan = Scan(context)
    scan.configure(64, 4)
    assert [t.name for t in scan.graph.tasks] == ["Scan.scan"]
    scan.configure(1024, 4)
    assert [t.name for t in scan.graph.tasks] == [
        "Scan.scan",
        "Scan.scan_sums",
        "Scan.add_group_sums",
    ]
    assert scan.get("D_SUMS").shape == (4, 4)


class TestScanConfiguration:
    @pytest.mark.parametrize("width, height", [(6, 4), (0, 4), (4, 0)])
    def test_invalid_dimensions(self, context, width, height):
        with pytest.raises(ConfigurationError):
            Scan(context).configure(width, height)

    def test_group_size_not_power_of_two(self, context):
        with pytest.raises(ConfigurationError):
            Scan(context, group_size=48).configure(64, 4)

    def test_group_size_too_large(self, context):
        group_size = context.max_threads_per_block
        with pytest.raises(KernelResourceError):
            Scan(context, group_size=group_size).configure(64, 4)

    def test_row_too_long(self, context):
        # one block of 4 threads covers 32 values, two levels cover 1024
        with pytest.raises(ConfigurationError):
            Scan(context, group_size=4).configure(2048, 1)

    def test_block_granularity_warning(self, context):
        group_size = context.warp_size // 2
        with pytest.warns(UserWarning, match="warp size"):
            Scan(context, group_size=group_size).configure(64, 4)
