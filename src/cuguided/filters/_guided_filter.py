# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Guided image filter with O(1) box filters.

- He, K., Sun, J., Tang, X. (2013). "Guided Image Filtering".
  IEEE TPAMI 35(6), 1397-1409. https://doi.org/10.1109/TPAMI.2012.213

The output is locally a linear transform of the guide, ``q = a * I + b``,
with ``a`` and ``b`` fit by regularized least squares over every
``(2 * radius + 1) ** 2`` window and then averaged over the windows covering
each pixel. Every window statistic is a box filter, computed here from
summed-area tables, so the cost per pixel does not depend on the radius.
"""

import enum

import cupy as cp
import numpy as np

from .._shared._context import default_context
from .._shared._kernels import get_kernel
from .._shared._stage import BufferSpec, Stage, Staging
from .._shared.params import FilterParameters
from .._shared.utils import (
    DEFAULT_BOX_SCALING,
    TILE,
    _elementwise_workspace,
    check_dimensions,
    check_vector_size,
)
from ..primitives._arith import Mult, Pown
from ._box_filter import BoxFilterSAT, _box_filter_reference


def _guided_filter_reference(p, radius, eps, guide=None):
    """Float64 guided filter on the CPU, for validation."""
    p = np.asarray(p, dtype=np.float64)
    guide = p if guide is None else np.asarray(guide, dtype=np.float64)

    def box(x):
        return _box_filter_reference(x, radius)

    mean_I = box(guide)
    mean_p = box(p)
    var_I = box(guide * guide) - mean_I * mean_I
    cov_Ip = box(guide * p) - mean_I * mean_p
    a = cov_Ip / (var_I + eps)
    b = mean_p - a * mean_I
    return box(a) * guide + box(b)


class GuidedFilter(Stage):
    """
    Guided filter of a float32 image.

    Parameters
    ----------
    context : Context
        Device and streams to run on.
    guided : bool, optional
        If False the image guides itself (I = p) and the input is ``D_IN``.
        If True the guide ``D_IN_I`` and the input ``D_IN_P`` are separate.
    staging : Staging, optional
        Host mirrors for the input roles and/or ``D_OUT``.
    radius, eps, zero_out, scaling, output_scaling : optional
        Initial values of the shared `FilterParameters`; see ``configure``.
    params : FilterParameters, optional
        Parameter block to share, e.g. with the other channels of an RGB
        pipeline. Overrides the individual values.
    name : str, optional
        Label in task graphs.

    Notes
    -----
    The self-guided graph::

        p ──> mean_p ─────────────┐
        p ──> p^2 ──> mean_p2 ────┴─> a, b ──> mean_a ──┐
                                           └─> mean_b ──┴─> q

    ``mean_p`` and ``p^2 -> mean_p2`` are independent and run on separate
    streams, as do ``mean_a`` and ``mean_b``. The guided variant computes
    ``mean_I``, ``mean_p``, ``corr_I = box(I*I)`` and ``corr_Ip = box(I*p)``
    instead, then ``var_I`` and ``cov_Ip`` before the coefficients.

    Width and height must be multiples of 16.
    """

    class Memory(enum.Enum):
        D_IN = "in"
        D_IN_I = "in_I"
        D_IN_P = "in_p"
        D_P2 = "p2"
        D_II = "II"
        D_IP = "Ip"
        D_MEAN_I = "mean_I"
        D_MEAN_P = "mean_p"
        D_MEAN_P2 = "mean_p2"
        D_CORR_I = "corr_I"
        D_CORR_IP = "corr_Ip"
        D_VAR_I = "var_I"
        D_COV_IP = "cov_Ip"
        D_A = "a"
        D_B = "b"
        D_MEAN_A = "mean_a"
        D_MEAN_B = "mean_b"
        D_OUT = "out"

    _outputs = (Memory.D_OUT,)

    def __init__(
        self,
        context,
        guided=False,
        staging=Staging.NONE,
        radius=1,
        eps=0.01,
        zero_out=False,
        scaling=DEFAULT_BOX_SCALING,
        output_scaling=1.0,
        params=None,
        name=None,
    ):
        super().__init__(context, staging, name)
        if params is None:
            params = FilterParameters(
                radius=radius,
                eps=eps,
                zero_out=zero_out,
                scaling=scaling,
                output_scaling=output_scaling,
            )
        self.params = params
        self.guided = bool(guided)
        M = self.Memory
        if self.guided:
            self._inputs = (M.D_IN_I, M.D_IN_P)
        else:
            self._inputs = (M.D_IN,)

        def box(tag):
            return BoxFilterSAT(
                context, params=self.params, name=f"{self.name}.{tag}"
            )

        if self.guided:
            self.mean_I = box("mean_I")
            self.mean_p = box("mean_p")
            self.mult_II = Mult(context, name=f"{self.name}.mult_II")
            self.corr_I = box("corr_I")
            self.mult_Ip = Mult(context, name=f"{self.name}.mult_Ip")
            self.corr_Ip = box("corr_Ip")
        else:
            self.mean_p = box("mean_p")
            self.squared = Pown(context, n=2, name=f"{self.name}.squared")
            self.mean_p2 = box("mean_p2")
        self.mean_a = box("mean_a")
        self.mean_b = box("mean_b")

    # -------------------------------------------------------------------------
    # Parameters, all stored in the shared block
    # -------------------------------------------------------------------------

    @property
    def radius(self):
        return self.params.radius

    @radius.setter
    def radius(self, value):
        self.params.radius = value

    @property
    def eps(self):
        return self.params.eps

    @eps.setter
    def eps(self, value):
        self.params.eps = value

    @property
    def zero_out(self):
        return self.params.zero_out

    @zero_out.setter
    def zero_out(self, value):
        self.params.zero_out = value

    @property
    def scaling(self):
        return self.params.scaling

    @scaling.setter
    def scaling(self, value):
        self.params.scaling = value

    @property
    def output_scaling(self):
        return self.params.output_scaling

    @output_scaling.setter
    def output_scaling(self, value):
        self.params.output_scaling = value

    # -------------------------------------------------------------------------
    # Buffers
    # -------------------------------------------------------------------------

    def _box_filters(self):
        if self.guided:
            boxes = [self.mean_I, self.mean_p, self.corr_I, self.corr_Ip]
        else:
            boxes = [self.mean_p, self.mean_p2]
        return boxes + [self.mean_a, self.mean_b]

    def _delegates(self):
        M = self.Memory
        out = BoxFilterSAT.Memory.D_OUT
        delegates = {
            M.D_MEAN_P: (self.mean_p, out),
            M.D_MEAN_A: (self.mean_a, out),
            M.D_MEAN_B: (self.mean_b, out),
        }
        if self.guided:
            delegates.update(
                {
                    M.D_II: (self.mult_II, Mult.Memory.D_OUT),
                    M.D_IP: (self.mult_Ip, Mult.Memory.D_OUT),
                    M.D_MEAN_I: (self.mean_I, out),
                    M.D_CORR_I: (self.corr_I, out),
                    M.D_CORR_IP: (self.corr_Ip, out),
                }
            )
        else:
            delegates.update(
                {
                    M.D_P2: (self.squared, Pown.Memory.D_OUT),
                    M.D_MEAN_P2: (self.mean_p2, out),
                }
            )
        return delegates

    def _layout(self):
        M = self.Memory
        shape = (self.height, self.width)
        if self.guided:
            roles = [
                (M.D_IN_I, "in"),
                (M.D_IN_P, "in"),
                (M.D_VAR_I, "inout"),
                (M.D_COV_IP, "inout"),
            ]
        else:
            roles = [(M.D_IN, "in")]
        roles += [(M.D_A, "inout"), (M.D_B, "inout"), (M.D_OUT, "out")]
        return tuple(
            BufferSpec(role, direction, shape, np.float32)
            for role, direction in roles
        )

    def configure(
        self,
        width,
        height,
        radius=None,
        eps=None,
        zero_out=None,
        scaling=None,
        output_scaling=None,
    ):
        """
        Allocate buffers and configure every sub-stage.

        Parameters
        ----------
        width, height : int
            Image dimensions, multiples of 16.
        radius : int, optional
            Window radius of all box filters.
        eps : float, optional
            Regularization; larger values smooth more.
        zero_out : bool, optional
            Keep zero-valued input pixels at zero (holes in depth maps).
        scaling : float, optional
            Accumulation scaling of the summed-area tables.
        output_scaling : float, optional
            Factor applied to the output.

        Parameters left as None keep their current values.
        """
        check_dimensions(self.name, width, height, (TILE, TILE))
        check_vector_size(self.name, width, height)
        updates = {
            "radius": radius,
            "eps": eps,
            "zero_out": zero_out,
            "scaling": scaling,
            "output_scaling": output_scaling,
        }
        for field, value in updates.items():
            if value is not None:
                setattr(self.params, field, value)

        self._begin_configure(width, height)
        self._allocate()

        M = self.Memory
        box_in = BoxFilterSAT.Memory.D_IN
        if self.guided:
            guide = self.get(M.D_IN_I)
            p = self.get(M.D_IN_P)
            self.mean_I._link(box_in, guide)
            self.mean_p._link(box_in, p)
            self.mult_II._link(Mult.Memory.D_IN1, guide)
            self.mult_II._link(Mult.Memory.D_IN2, guide)
            self.mult_Ip._link(Mult.Memory.D_IN1, guide)
            self.mult_Ip._link(Mult.Memory.D_IN2, p)
            self.mult_II.configure(width, height)
            self.mult_Ip.configure(width, height)
            self.corr_I._link(box_in, self.get(M.D_II))
            self.corr_Ip._link(box_in, self.get(M.D_IP))
        else:
            p = self.get(M.D_IN)
            self.mean_p._link(box_in, p)
            self.squared._link(Pown.Memory.D_IN, p)
            self.squared.configure(width, height)
            self.mean_p2._link(box_in, self.get(M.D_P2))
        self.mean_a._link(box_in, self.get(M.D_A))
        self.mean_b._link(box_in, self.get(M.D_B))

        for box in self._box_filters():
            box.configure(width, height)

        self.workspaces = {
            "elementwise": _elementwise_workspace(
                width * height // 4, self.context.warp_size
            )
        }
        self._finish_configure()

    # -------------------------------------------------------------------------
    # Task graph
    # -------------------------------------------------------------------------

    def schedule(self, graph):
        M = self.Memory
        ws = self.workspaces["elementwise"]
        n4 = np.int32(self.width * self.height // 4)
        a = self.get(M.D_A)
        b = self.get(M.D_B)
        mean_p = self.get(M.D_MEAN_P)

        if self.guided:
            guide = self.get(M.D_IN_I)
            p = self.get(M.D_IN_P)
            mean_I = self.get(M.D_MEAN_I)
            corr_I = self.get(M.D_CORR_I)
            corr_Ip = self.get(M.D_CORR_IP)
            var_I = self.get(M.D_VAR_I)
            cov_Ip = self.get(M.D_COV_IP)

            self.mean_I.schedule(graph)
            self.mean_p.schedule(graph)
            self.mult_II.schedule(graph)
            self.corr_I.schedule(graph)
            self.mult_Ip.schedule(graph)
            self.corr_Ip.schedule(graph)

            def var():
                kernel = get_kernel("guided_filter.cu", "gf_var")
                kernel(
                    ws.grid,
                    ws.block,
                    (corr_I, corr_Ip, mean_I, mean_p, var_I, cov_Ip, n4),
                )

            def ab():
                kernel = get_kernel("guided_filter.cu", "gf_ab")
                kernel(
                    ws.grid,
                    ws.block,
                    (
                        var_I,  # var_I
                        cov_Ip,  # cov_Ip
                        mean_I,  # mean_I
                        mean_p,  # mean_p
                        a,  # a
                        b,  # b
                        np.float32(self.params.eps),  # eps
                        n4,  # n4
                    ),
                )

            graph.add(
                f"{self.name}.var",
                var,
                reads=(corr_I, corr_Ip, mean_I, mean_p),
                writes=(var_I, cov_Ip),
            )
            graph.add(
                f"{self.name}.ab",
                ab,
                reads=(var_I, cov_Ip, mean_I, mean_p),
                writes=(a, b),
            )
        else:
            guide = p = self.get(M.D_IN)
            mean_p2 = self.get(M.D_MEAN_P2)

            self.mean_p.schedule(graph)
            self.squared.schedule(graph)
            self.mean_p2.schedule(graph)

            def ab():
                kernel = get_kernel("guided_filter.cu", "gf_ab_self")
                kernel(
                    ws.grid,
                    ws.block,
                    (mean_p, mean_p2, a, b, np.float32(self.params.eps), n4),
                )

            graph.add(
                f"{self.name}.ab", ab, reads=(mean_p, mean_p2), writes=(a, b)
            )

        self.mean_a.schedule(graph)
        self.mean_b.schedule(graph)
        mean_a = self.get(M.D_MEAN_A)
        mean_b = self.get(M.D_MEAN_B)
        out = self.get(M.D_OUT)

        def q():
            kernel = get_kernel("guided_filter.cu", "gf_q")
            kernel(
                ws.grid,
                ws.block,
                (
                    guide,  # guide
                    p,  # p
                    mean_a,  # mean_a
                    mean_b,  # mean_b
                    out,  # out
                    np.int32(self.params.zero_out),  # zero_out
                    np.float32(self.params.output_scaling),  # scaling
                    n4,  # n4
                ),
            )

        graph.add(
            f"{self.name}.q",
            q,
            reads=(guide, p, mean_a, mean_b),
            writes=(out,),
        )


def guided_filter(
    image,
    radius,
    eps,
    guide=None,
    *,
    zero_out=False,
    scaling=DEFAULT_BOX_SCALING,
    context=None,
):
    """
    Edge-preserving smoothing with the guided filter.

    Parameters
    ----------
    image : (M, N) or (M, N, 3) array
        Image to filter. Both spatial dimensions must be multiples of 16.
        Color images are filtered channel by channel.
    radius : int
        Window radius; windows are ``2 * radius + 1`` pixels wide.
    eps : float
        Regularization. Edges with a local variance well above `eps` are
        preserved, flatter regions are smoothed.
    guide : (M, N) array, optional
        Guidance image. By default the image guides itself.
    zero_out : bool, optional
        Keep pixels that are exactly zero in `image` at zero, e.g. holes in a
        depth map.
    scaling : float, optional
        Accumulation scaling of the summed-area tables. Lower it for images
        with large values.
    context : Context, optional
        Execution context. The shared context of the current device is used
        if not given.

    Returns
    -------
    out : cupy.ndarray of float32
        Filtered image, same shape as `image`.

    Notes
    -----
    With ``eps = 0`` the filter reproduces the image wherever its local
    variance is nonzero; as ``eps`` grows it tends to the box filter of
    radius `radius`.

    Examples
    --------
    >>> import cupy as cp
    >>> from cuguided.filters import guided_filter
    >>> image = cp.random.rand(64, 64).astype(cp.float32)
    >>> smooth = guided_filter(image, radius=4, eps=0.01)
    """
    image = cp.asarray(image, dtype=cp.float32)
    if image.ndim == 3 and image.shape[-1] == 3:
        if context is None:
            context = default_context()
        channels = [
            guided_filter(
                image[..., c],
                radius,
                eps,
                guide=guide,
                zero_out=zero_out,
                scaling=scaling,
                context=context,
            )
            for c in range(3)
        ]
        return cp.stack(channels, axis=-1)
    if image.ndim != 2:
        raise ValueError(
            f"image must be 2D or RGB, got an array of shape {image.shape}"
        )
    if guide is not None:
        guide = cp.asarray(guide, dtype=cp.float32)
        if guide.shape != image.shape:
            raise ValueError(
                f"guide shape {guide.shape} does not match image shape "
                f"{image.shape}"
            )
    if context is None:
        context = default_context()

    height, width = image.shape
    gf = GuidedFilter(
        context,
        guided=guide is not None,
        radius=radius,
        eps=eps,
        zero_out=zero_out,
        scaling=scaling,
    )
    gf.configure(width, height)
    M = GuidedFilter.Memory
    if guide is None:
        inputs = {M.D_IN: image}
    else:
        inputs = {M.D_IN_I: guide, M.D_IN_P: image}
    return gf.run_once(inputs)
