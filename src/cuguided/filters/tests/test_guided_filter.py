# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import cupy as cp
import numpy as np
import pytest

from cuguided import ConfigurationError, Context, FilterParameters
from cuguided._shared._context import default_context
from cuguided.filters import GuidedFilter, guided_filter
from cuguided.filters._box_filter import _box_filter_reference
from cuguided.filters._guided_filter import _guided_filter_reference


@pytest.fixture(scope="module")
def context():
    return Context()


@pytest.fixture(scope="module")
def image():
    rng = np.random.default_rng(7)
    return rng.random((480, 640), dtype=np.float32)


@pytest.fixture(scope="module")
def guide():
    rng = np.random.default_rng(8)
    return rng.random((480, 640), dtype=np.float32)


class TestSelfGuided:
    @pytest.mark.parametrize("value", [1.0, 0.5])
    def test_constant_is_fixed_point(self, context, value):
        data = np.full((480, 640), value, dtype=np.float32)
        gf = GuidedFilter(context, radius=5, eps=0.02)
        gf.configure(640, 480)
        out = gf.run_once({"D_IN": data})
        cp.testing.assert_allclose(out, data, atol=5e-3)

    @pytest.mark.parametrize("radius, eps", [(1, 0.01), (3, 0.1), (8, 0.001)])
    def test_reference(self, context, image, radius, eps):
        data = image[:64, :64].copy()
        gf = GuidedFilter(context, radius=radius, eps=eps)
        gf.configure(64, 64)
        out = gf.run_once({"D_IN": data})
        cp.testing.assert_allclose(
            out, _guided_filter_reference(data, radius, eps), atol=5e-3
        )

    def test_reference_vga(self, context, image):
        gf = GuidedFilter(context, radius=5, eps=0.02)
        gf.configure(640, 480)
        out = gf.run_once({"D_IN": image})
        cp.testing.assert_allclose(
            out, _guided_filter_reference(image, 5, 0.02), atol=5e-3
        )

    def test_zero_eps_is_identity(self, context, image):
        data = image[:64, :64].copy()
        gf = GuidedFilter(context, radius=3, eps=0)
        gf.configure(64, 64)
        out = gf.run_once({"D_IN": data})
        cp.testing.assert_allclose(out, data, atol=5e-3)

    def test_flat_region_with_zero_eps(self, context):
        data = np.zeros((64, 64), dtype=np.float32)
        gf = GuidedFilter(context, radius=2, eps=0)
        gf.configure(64, 64)
        out = gf.run_once({"D_IN": data})
        assert not cp.isnan(out).any()
        cp.testing.assert_array_equal(out, 0)

    def test_infinite_eps_is_box_filter(self, context, image):
        data = image[:64, :64].copy()
        gf = GuidedFilter(context, radius=4, eps=np.inf)
        gf.configure(64, 64)
        out = gf.run_once({"D_IN": data})
        # a = 0 and b = mean_p, so q is the box filter of mean_p
        expected = _box_filter_reference(_box_filter_reference(data, 4), 4)
        cp.testing.assert_allclose(out, expected, atol=5e-3)

    def test_large_eps_smooths(self, context, image):
        data = image[:64, :64].copy()
        gf = GuidedFilter(context, radius=4, eps=1e4)
        gf.configure(64, 64)
        out = gf.run_once({"D_IN": data})
        assert float(out.std()) < 0.5 * float(data.std())

    @pytest.mark.parametrize("zero_out", [False, True])
    def test_zero_out(self, context, image, zero_out):
        data = image[:64, :64].copy()
        holes = np.zeros_like(data, dtype=bool)
        holes[10:14, 20:30] = True
        holes[40, 40] = True
        data[holes] = 0
        gf = GuidedFilter(context, radius=3, eps=0.05, zero_out=zero_out)
        gf.configure(64, 64)
        out = cp.asnumpy(gf.run_once({"D_IN": data}))
        if zero_out:
            assert np.all(out[holes] == 0)
        else:
            assert np.all(out[holes] != 0)
        assert np.all(out[~holes] != 0)

    def test_output_scaling(self, context, image):
        data = image[:64, :64].copy()
        gf = GuidedFilter(context, radius=2, eps=0.01)
        gf.configure(64, 64)
        base = gf.run_once({"D_IN": data})
        gf.output_scaling = 2.0
        scaled = gf.run_once({"D_IN": data})
        cp.testing.assert_allclose(scaled, 2 * base, rtol=1e-6)


class TestParameters:
    def test_shared_by_every_box_filter(self, context):
        gf = GuidedFilter(context, radius=2, eps=0.1)
        for box in gf._box_filters():
            assert box.params is gf.params
            assert box.sat.params is gf.params

    def test_update_after_configure(self, context, image):
        data = image[:64, :64].copy()
        gf = GuidedFilter(context, radius=1, eps=0.5)
        gf.configure(64, 64)
        gf.radius = 4
        gf.eps = 0.01
        assert all(box.radius == 4 for box in gf._box_filters())
        out = gf.run_once({"D_IN": data})
        cp.testing.assert_allclose(
            out, _guided_filter_reference(data, 4, 0.01), atol=5e-3
        )

    def test_configure_arguments(self, context):
        gf = GuidedFilter(context)
        gf.configure(
            64, 64, radius=6, eps=0.2, zero_out=True, output_scaling=3.0
        )
        assert gf.mean_b.radius == 6
        assert gf.params.eps == 0.2
        assert gf.zero_out
        assert gf.output_scaling == 3.0

    def test_external_parameter_block(self, context):
        params = FilterParameters(radius=5, eps=0.3)
        first = GuidedFilter(context, params=params, name="first")
        second = GuidedFilter(context, params=params, name="second")
        first.radius = 2
        assert second.radius == 2
        assert second.mean_p.radius == 2

    @pytest.mark.parametrize(
        "field, value",
        [("radius", -1), ("eps", -1.0), ("scaling", 0), ("output_scaling", 0)],
    )
    def test_invalid_values(self, context, field, value):
        gf = GuidedFilter(context)
        with pytest.raises(ValueError):
            setattr(gf, field, value)


class TestScheduling:
    def test_independent_box_filters_overlap(self, context):
        gf = GuidedFilter(context, radius=2)
        gf.configure(64, 64)
        graph = gf.graph
        streams = {task.name: task.stream_index for task in graph.tasks}
        assert (
            streams["GuidedFilter.mean_p.box_filter"]
            != streams["GuidedFilter.mean_p2.box_filter"]
        )
        assert (
            streams["GuidedFilter.mean_a.box_filter"]
            != streams["GuidedFilter.mean_b.box_filter"]
        )

    def test_coefficients_wait_for_both_means(self, context):
        gf = GuidedFilter(context)
        gf.configure(64, 64)
        tasks = {task.name: task for task in gf.graph.tasks}
        deps = {dep.name for dep in tasks["GuidedFilter.ab"].deps}
        assert deps == {
            "GuidedFilter.mean_p.box_filter",
            "GuidedFilter.mean_p2.box_filter",
        }

    def test_critical_path_is_shorter_than_graph(self, context):
        gf = GuidedFilter(context)
        gf.configure(64, 64)
        path = gf.graph.critical_path()
        assert path[-1] == "GuidedFilter.q"
        assert len(path) < len(gf.graph.tasks)

    def test_repeated_runs(self, context, image):
        data = image[:64, :64].copy()
        gf = GuidedFilter(context, radius=3, eps=0.05)
        gf.configure(64, 64)
        first = gf.run_once({"D_IN": data})
        for _ in range(3):
            gf.run()
        second = gf.run_once({"D_IN": data})
        cp.testing.assert_array_equal(first, second)


class TestGuided:
    @pytest.mark.parametrize("radius, eps", [(2, 0.01), (5, 0.1)])
    def test_reference(self, context, image, guide, radius, eps):
        p = image[:64, :96].copy()
        guide_image = guide[:64, :96].copy()
        gf = GuidedFilter(context, guided=True, radius=radius, eps=eps)
        gf.configure(96, 64)
        out = gf.run_once({"D_IN_I": guide_image, "D_IN_P": p})
        expected = _guided_filter_reference(p, radius, eps, guide=guide_image)
        cp.testing.assert_allclose(out, expected, atol=5e-3)

    def test_same_guide_matches_self_guided(self, context, image):
        data = image[:64, :64].copy()
        guided = GuidedFilter(context, guided=True, radius=3, eps=0.05)
        guided.configure(64, 64)
        self_guided = GuidedFilter(context, radius=3, eps=0.05)
        self_guided.configure(64, 64)
        cp.testing.assert_allclose(
            guided.run_once({"D_IN_I": data, "D_IN_P": data}),
            self_guided.run_once({"D_IN": data}),
            atol=1e-3,
        )

    def test_zero_out_follows_input(self, context, image, guide):
        p = image[:64, :64].copy()
        p[5:9, 5:9] = 0
        gf = GuidedFilter(
            context, guided=True, radius=2, eps=0.01, zero_out=True
        )
        gf.configure(64, 64)
        out = gf.run_once({"D_IN_I": guide[:64, :64], "D_IN_P": p})
        cp.testing.assert_array_equal(out[5:9, 5:9], 0)

    def test_roles(self, context):
        gf = GuidedFilter(context, guided=True)
        gf.configure(64, 64)
        assert gf.get("D_VAR_I").shape == (64, 64)
        with pytest.raises(KeyError):
            gf.get("D_IN")
        with pytest.raises(KeyError):
            gf.get("D_MEAN_P2")


def test_invalid_dimensions(context):
    with pytest.raises(ConfigurationError):
        GuidedFilter(context).configure(40, 64)


class TestGuidedFilterFunction:
    def test_numpy_input(self, image):
        data = image[:64, :64]
        out = guided_filter(data, 2, 0.01)
        assert isinstance(out, cp.ndarray)
        assert out.dtype == cp.float32
        cp.testing.assert_allclose(
            out, _guided_filter_reference(data, 2, 0.01), atol=5e-3
        )

    def test_with_guide(self, image, guide):
        p = cp.asarray(image[:64, :64])
        g = cp.asarray(guide[:64, :64])
        out = guided_filter(p, 2, 0.01, guide=g)
        cp.testing.assert_allclose(
            out,
            _guided_filter_reference(image[:64, :64], 2, 0.01, guide[:64, :64]),
            atol=5e-3,
        )

    def test_rgb(self, image):
        rgb = np.stack(
            [image[:64, :64], image[64:128, :64], image[128:192, :64]],
            axis=-1,
        )
        out = guided_filter(rgb, 2, 0.01)
        assert out.shape == (64, 64, 3)
        for c in range(3):
            cp.testing.assert_allclose(
                out[..., c],
                _guided_filter_reference(rgb[..., c], 2, 0.01),
                atol=5e-3,
            )

    def test_default_context_is_shared(self, image):
        context = default_context()
        assert default_context() is context
        assert context.device.id == cp.cuda.Device().id
        first = guided_filter(image[:64, :64], 2, 0.01)
        second = guided_filter(image[:64, :64], 2, 0.01, context=context)
        cp.testing.assert_array_equal(first, second)

    def test_guide_shape_mismatch(self, image, guide):
        with pytest.raises(ValueError, match="guide"):
            guided_filter(image[:64, :64], 2, 0.01, guide=guide[:32, :64])

    def test_invalid_ndim(self):
        with pytest.raises(ValueError):
            guided_filter(cp.zeros(64, dtype=cp.float32), 2, 0.01)
