# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import cupy as cp
import pytest

from cuguided import ConfigurationError, Context
from cuguided.primitives import Mult, Pown


@pytest.fixture(scope="module")
def context():
    return Context()


@pytest.mark.parametrize("shape", [(1, 4), (64, 64), (30, 10), (480, 640)])
def test_mult(context, shape):
    a = cp.random.rand(*shape).astype(cp.float32)
    b = cp.random.rand(*shape).astype(cp.float32)
    stage = Mult(context)
    stage.configure(shape[1], shape[0])
    out = stage.run_once({"D_IN1": a, "D_IN2": b})
    cp.testing.assert_allclose(out, a * b, rtol=1e-6)


def test_mult_aliased_inputs_square(context):
    x = cp.random.rand(64, 64).astype(cp.float32)
    stage = Mult(context)
    stage.set("D_IN1", x)
    stage.set("D_IN2", x)
    stage.configure(64, 64)
    cp.cuda.Device().synchronize()
    stage.run().synchronize()
    cp.testing.assert_allclose(stage.get("D_OUT"), x * x, rtol=1e-6)


@pytest.mark.parametrize("n", [-2, -1, 0, 1, 2, 3, 5])
def test_pown(context, n):
    x = (cp.random.rand(64, 64) + 0.5).astype(cp.float32)
    stage = Pown(context, n=n)
    stage.configure(64, 64)
    out = stage.run_once({"D_IN": x})
    cp.testing.assert_allclose(out, x.astype(cp.float64) ** n, rtol=1e-5)


def test_pown_exponent_update(context):
    x = cp.full((16, 16), 3, dtype=cp.float32)
    stage = Pown(context, n=2)
    stage.configure(16, 16)
    cp.testing.assert_array_equal(stage.run_once({"D_IN": x}), x * x)
    stage.n = 3
    cp.testing.assert_array_equal(stage.run_once({"D_IN": x}), x * x * x)


def test_pown_invalid_exponent(context):
    with pytest.raises(ValueError):
        Pown(context, n=0.5)


@pytest.mark.parametrize("stage_class", [Mult, Pown])
def test_vector_size(context, stage_class):
    with pytest.raises(ConfigurationError):
        stage_class(context).configure(3, 3)
