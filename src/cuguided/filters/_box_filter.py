# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Mean (box) filters with windows clipped at the image borders.

`BoxFilterSAT` reads four corners of a summed-area table per pixel, so its
cost does not depend on the radius. `BoxFilter` sums the window directly and
serves as a reference and for small radii.
"""

import enum

import cupy as cp
import numpy as np

from .._shared._kernels import get_kernel
from .._shared._context import default_context
from .._shared._stage import BufferSpec, Stage, Staging
from .._shared.params import FilterParameters
from .._shared.utils import (
    DEFAULT_BOX_SCALING,
    TILE,
    ConfigurationError,
    Workspace,
    check_block_shape,
    check_dimensions,
)
from ..primitives._sat import SAT


def _box_filter_reference(image, radius):
    """Clipped-window mean computed from a float64 summed-area table."""
    image = np.asarray(image, dtype=np.float64)
    height, width = image.shape
    sat = np.zeros((height + 1, width + 1))
    sat[1:, 1:] = image.cumsum(axis=0).cumsum(axis=1)
    rows = np.arange(height)
    cols = np.arange(width)
    top = np.clip(rows - radius, 0, height)
    bottom = np.clip(rows + radius + 1, 0, height)
    left = np.clip(cols - radius, 0, width)
    right = np.clip(cols + radius + 1, 0, width)
    total = (
        sat[bottom][:, right]
        - sat[top][:, right]
        - sat[bottom][:, left]
        + sat[top][:, left]
    )
    count = np.outer(bottom - top, right - left)
    return total / count


def _tile_workspace(width, height):
    return Workspace((width // TILE, height // TILE, 1), (TILE, TILE, 1), 0)


class BoxFilterSAT(Stage):
    """
    O(1) mean filter reading a summed-area table.

    Each output pixel is the mean of the ``(2 * radius + 1) ** 2`` window
    around it, clipped at the image borders::

        sum = S[bottom, right] - S[top, right] - S[bottom, left] + S[top, left]

    with corners outside the image read as zero and the divisor set to the
    number of pixels actually inside the window.

    Parameters
    ----------
    context : Context
        Device and streams to run on.
    staging : Staging, optional
        Host mirrors for ``D_IN`` and/or ``D_OUT``.
    transposed : bool, optional
        Orientation of the SAT the kernel reads. The transposed layout saves
        one transpose launch per filter.
    radius : int, optional
        Window radius.
    scaling : float, optional
        Applied before summation and undone in the output.
    params : FilterParameters, optional
        Shared parameter block; ``radius`` and ``scaling`` are used.
    name : str, optional
        Label in task graphs.

    Notes
    -----
    Width and height must be multiples of 16. ``D_IN`` is the input of the
    SAT stage and ``D_SAT`` its output.

    ===== ==== ============================== =======
    role  dir  shape                          dtype
    ===== ==== ============================== =======
    D_IN  in   (height, width)                float32
    D_SAT      (width, height) if transposed  float32
    D_OUT out  (height, width)                float32
    ===== ==== ============================== =======
    """

    class Memory(enum.Enum):
        D_IN = "in"
        D_SAT = "sat"
        D_OUT = "out"

    _inputs = (Memory.D_IN,)
    _outputs = (Memory.D_OUT,)

    def __init__(
        self,
        context,
        staging=Staging.NONE,
        transposed=True,
        radius=1,
        scaling=DEFAULT_BOX_SCALING,
        params=None,
        name=None,
    ):
        super().__init__(context, staging, name)
        check_block_shape(self.name, (TILE, TILE, 1), context)
        if params is None:
            params = FilterParameters(radius=radius, scaling=scaling)
        self.params = params
        self.transposed = bool(transposed)
        self.sat = SAT(
            context,
            transposed=self.transposed,
            params=self.params,
            name=f"{self.name}.sat",
        )

    @property
    def radius(self):
        return self.params.radius

    @radius.setter
    def radius(self, value):
        self.params.radius = value

    @property
    def scaling(self):
        return self.params.scaling

    @scaling.setter
    def scaling(self, value):
        self.params.scaling = value

    def _delegates(self):
        return {
            self.Memory.D_IN: (self.sat, SAT.Memory.D_IN),
            self.Memory.D_SAT: (self.sat, SAT.Memory.D_OUT),
        }

    def _layout(self):
        return (
            BufferSpec(
                self.Memory.D_OUT, "out", (self.height, self.width), np.float32
            ),
        )

    def configure(self, width, height, radius=None):
        check_dimensions(self.name, width, height, (TILE, TILE))
        if self.sat.transposed != self.transposed:
            expected = "transposed" if self.transposed else "row-major"
            raise ConfigurationError(
                f"{self.name}: the kernel reads a {expected} SAT but "
                f"{self.sat.name} produces a {self.sat.layout} one"
            )
        if radius is not None:
            self.params.radius = radius

        self._begin_configure(width, height)
        self.sat.configure(width, height)
        self._allocate()
        self.workspaces = {"box_filter": _tile_workspace(width, height)}
        self._finish_configure()

    def schedule(self, graph):
        self.sat.schedule(graph)
        sat = self.get(self.Memory.D_SAT)
        out = self.get(self.Memory.D_OUT)
        ws = self.workspaces["box_filter"]
        kernel_name = "box_filter_sat_t" if self.transposed else "box_filter_sat"

        def box_filter():
            kernel = get_kernel("box_filter.cu", kernel_name)
            kernel(
                ws.grid,
                ws.block,
                (
                    sat,  # sat
                    out,  # out
                    np.int32(self.params.radius),  # radius
                    np.float32(1.0 / self.params.scaling),  # inv_scaling
                ),
            )

        graph.add(
            f"{self.name}.box_filter", box_filter, reads=(sat,), writes=(out,)
        )


class BoxFilter(Stage):
    """
    Direct mean filter, summing every pixel of the clipped window.

    The ``(16 + 2 * radius) ** 2`` halo of each 16x16 block is streamed
    through shared memory one tile at a time, so the cost grows with the
    window area. Width and height must be multiples of 16.
    """

    class Memory(enum.Enum):
        D_IN = "in"
        D_OUT = "out"

    _inputs = (Memory.D_IN,)
    _outputs = (Memory.D_OUT,)

    def __init__(
        self, context, staging=Staging.NONE, radius=1, params=None, name=None
    ):
        super().__init__(context, staging, name)
        check_block_shape(self.name, (TILE, TILE, 1), context)
        if params is None:
            params = FilterParameters(radius=radius)
        self.params = params

    @property
    def radius(self):
        return self.params.radius

    @radius.setter
    def radius(self, value):
        self.params.radius = value

    def _layout(self):
        shape = (self.height, self.width)
        return (
            BufferSpec(self.Memory.D_IN, "in", shape, np.float32),
            BufferSpec(self.Memory.D_OUT, "out", shape, np.float32),
        )

    def configure(self, width, height, radius=None):
        check_dimensions(self.name, width, height, (TILE, TILE))
        if radius is not None:
            self.params.radius = radius
        self._begin_configure(width, height)
        self._allocate()
        self.workspaces = {"box_filter": _tile_workspace(width, height)}
        self._finish_configure()

    def schedule(self, graph):
        d_in = self.get(self.Memory.D_IN)
        d_out = self.get(self.Memory.D_OUT)
        ws = self.workspaces["box_filter"]

        def box_filter():
            kernel = get_kernel("box_filter.cu", "box_filter")
            kernel(ws.grid, ws.block, (d_in, d_out, np.int32(self.params.radius)))

        graph.add(
            f"{self.name}.box_filter", box_filter, reads=(d_in,), writes=(d_out,)
        )


def box_filter(
    image, radius, *, method="sat", scaling=DEFAULT_BOX_SCALING, context=None
):
    """
    Mean filter over a square window clipped at the image borders.

    Parameters
    ----------
    image : (M, N) array
        Input image. Both dimensions must be multiples of 16.
    radius : int
        Window radius; the window is ``2 * radius + 1`` pixels wide.
    method : {'sat', 'direct'}, optional
        ``'sat'`` uses a summed-area table (constant cost per pixel);
        ``'direct'`` sums the window.
    scaling : float, optional
        Accumulation scaling of the summed-area table.
    context : Context, optional
        Execution context. The shared context of the current device is used
        if not given.

    Returns
    -------
    out : (M, N) cupy.ndarray of float32

    Examples
    --------
    >>> import cupy as cp
    >>> from cuguided.filters import box_filter
    >>> image = cp.ones((32, 32), dtype=cp.float32)
    >>> round(float(box_filter(image, 3)[16, 16]), 4)
    1.0
    """
    valid_methods = ("sat", "direct")
    if method not in valid_methods:
        raise ValueError(
            f"unsupported method {method!r}; choose one of {valid_methods}"
        )
    image = cp.asarray(image, dtype=cp.float32)
    if image.ndim != 2:
        raise ValueError(f"image must be 2D, got {image.ndim} dimensions")
    if context is None:
        context = default_context()
    height, width = image.shape
    if method == "sat":
        stage = BoxFilterSAT(context, radius=radius, scaling=scaling)
    else:
        stage = BoxFilter(context, radius=radius)
    stage.configure(width, height)
    return stage.run_once({stage.Memory.D_IN: image})
