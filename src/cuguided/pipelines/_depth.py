# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import enum

from .._shared._stage import Stage, Staging
from .._shared.params import FilterParameters
from .._shared.utils import DEFAULT_BOX_SCALING, TILE, check_dimensions
from ..filters._guided_filter import GuidedFilter
from ..image_support._depth import Depth


class GuidedFilterDepth(Stage):
    """
    Hole-preserving guided filter of a uint16 depth map.

    The raw depth is converted to float and multiplied by `depth_scaling`,
    filtered with the image as its own guide, and scaled back by
    ``1 / depth_scaling`` so the float32 output is in raw depth units.
    With ``zero_out`` (the default) pixels without a depth reading stay zero.

    Parameters
    ----------
    context : Context
        Device and streams to run on.
    staging : Staging, optional
        Host mirrors for ``D_IN`` and/or ``D_OUT``.
    radius, eps : optional
        Filter parameters. `eps` applies to the scaled depth.
    depth_scaling : float, optional
        Factor bringing raw depth values near [0, 1]; 1e-3 turns millimetres
        into metres.
    zero_out : bool, optional
        Keep pixels with zero depth at zero.
    scaling : float, optional
        Accumulation scaling of the summed-area tables.
    name : str, optional
        Label in task graphs.
    """

    class Memory(enum.Enum):
        D_IN = "in"
        D_DEPTH = "depth"
        D_OUT = "out"

    _inputs = (Memory.D_IN,)
    _outputs = (Memory.D_OUT,)

    def __init__(
        self,
        context,
        staging=Staging.NONE,
        radius=1,
        eps=0.01,
        depth_scaling=1e-3,
        zero_out=True,
        scaling=DEFAULT_BOX_SCALING,
        name=None,
    ):
        super().__init__(context, staging, name)
        self.params = FilterParameters(
            radius=radius, eps=eps, zero_out=zero_out, scaling=scaling
        )
        self.depth = Depth(context, name=f"{self.name}.depth")
        self.filter = GuidedFilter(
            context, params=self.params, name=f"{self.name}.filter"
        )
        self.depth_scaling = depth_scaling

    @property
    def depth_scaling(self):
        return self.depth.scaling

    @depth_scaling.setter
    def depth_scaling(self, value):
        self.depth.scaling = value
        self.params.output_scaling = 1.0 / self.depth.scaling

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

    def _delegates(self):
        M = self.Memory
        return {
            M.D_IN: (self.depth, Depth.Memory.D_IN),
            M.D_DEPTH: (self.depth, Depth.Memory.D_OUT),
            M.D_OUT: (self.filter, GuidedFilter.Memory.D_OUT),
        }

    def configure(self, width, height, radius=None, eps=None):
        check_dimensions(self.name, width, height, (TILE, TILE))
        if radius is not None:
            self.params.radius = radius
        if eps is not None:
            self.params.eps = eps

        self._begin_configure(width, height)
        self.depth.configure(width, height)
        self.filter._link(
            GuidedFilter.Memory.D_IN, self.get(self.Memory.D_DEPTH)
        )
        self.filter.configure(width, height)
        self._finish_configure()

    def schedule(self, graph):
        self.depth.schedule(graph)
        self.filter.schedule(graph)
