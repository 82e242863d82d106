# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import enum

import numpy as np

from .._shared._stage import Stage, Staging
from .._shared.params import FilterParameters
from .._shared.utils import DEFAULT_BOX_SCALING, TILE, check_dimensions
from ..filters._guided_filter import GuidedFilter
from ..image_support._channels import CombineRGB, SeparateRGB

_LAYOUTS = ("separated", "interleaved")


class GuidedFilterRGB(Stage):
    """
    Self-guided filter of every channel of an interleaved RGB image.

    The image is split into three float planes in [0, 1], each filtered by
    its own `GuidedFilter`, and with ``layout="interleaved"`` recombined
    into one ``(height, width, 3)`` float32 image. Every stage aliases the
    buffers of its producer, and all launches live in one task graph, so the
    channels overlap on the context's streams.

    Parameters
    ----------
    context : Context
        Device and streams to run on.
    layout : {'separated', 'interleaved'}, optional
        Whether the result is three planes (``D_OUT_R``, ``D_OUT_G``,
        ``D_OUT_B``) or one interleaved image (``D_OUT``).
    staging : Staging, optional
        Host mirrors for ``D_IN`` and/or the outputs.
    in_dtype : dtype, optional
        Pixel type of the input image.
    radius, eps, scaling : optional
        Initial values of the parameter block shared by the three channels.
    name : str, optional
        Label in task graphs.
    """

    class Memory(enum.Enum):
        D_IN = "in"
        D_OUT_R = "out_r"
        D_OUT_G = "out_g"
        D_OUT_B = "out_b"
        D_OUT = "out"

    _inputs = (Memory.D_IN,)

    def __init__(
        self,
        context,
        layout="separated",
        staging=Staging.NONE,
        in_dtype=np.uint8,
        radius=1,
        eps=0.01,
        scaling=DEFAULT_BOX_SCALING,
        name=None,
    ):
        if layout not in _LAYOUTS:
            raise ValueError(
                f"unsupported layout {layout!r}; choose one of {_LAYOUTS}"
            )
        super().__init__(context, staging, name)
        self.layout = layout
        self.params = FilterParameters(radius=radius, eps=eps, scaling=scaling)
        M = self.Memory
        if layout == "interleaved":
            self._outputs = (M.D_OUT,)
        else:
            self._outputs = (M.D_OUT_R, M.D_OUT_G, M.D_OUT_B)

        self.separate = SeparateRGB(
            context, in_dtype=in_dtype, name=f"{self.name}.separate"
        )
        self.channels = tuple(
            GuidedFilter(context, params=self.params, name=f"{self.name}.{c}")
            for c in "rgb"
        )
        self.combine = None
        if layout == "interleaved":
            self.combine = CombineRGB(context, name=f"{self.name}.combine")

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

    def _delegates(self):
        M = self.Memory
        delegates = {M.D_IN: (self.separate, SeparateRGB.Memory.D_IN)}
        for role, gf in zip((M.D_OUT_R, M.D_OUT_G, M.D_OUT_B), self.channels):
            delegates[role] = (gf, GuidedFilter.Memory.D_OUT)
        if self.combine is not None:
            delegates[M.D_OUT] = (self.combine, CombineRGB.Memory.D_OUT)
        return delegates

    def configure(self, width, height, radius=None, eps=None):
        check_dimensions(self.name, width, height, (TILE, TILE))
        if radius is not None:
            self.params.radius = radius
        if eps is not None:
            self.params.eps = eps

        self._begin_configure(width, height)
        self.separate.configure(width, height)
        for gf, plane in zip(self.channels, SeparateRGB._outputs):
            gf._link(GuidedFilter.Memory.D_IN, self.separate.get(plane))
            gf.configure(width, height)
        if self.combine is not None:
            for role, gf in zip(CombineRGB._inputs, self.channels):
                self.combine._link(role, gf.get(GuidedFilter.Memory.D_OUT))
            self.combine.configure(width, height)
        self._finish_configure()

    def schedule(self, graph):
        self.separate.schedule(graph)
        for gf in self.channels:
            gf.schedule(graph)
        if self.combine is not None:
            self.combine.schedule(graph)
