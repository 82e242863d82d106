# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Parallel inclusive prefix sum over the rows of a 2-D array.

Each row is scanned with the work-efficient algorithm of Blelloch, as laid
out for CUDA by Harris et al.:

- Blelloch, G. E. (1990). "Prefix Sums and Their Applications".
  Technical Report CMU-CS-90-190.
- Harris, M., Sengupta, S., Owens, J. D. (2007). "Parallel Prefix Sum
  (Scan) with CUDA". GPU Gems 3, chapter 39.

Rows wider than one block are handled in three launches: a blocked scan
that also emits the total of every block, a scan of those totals, and a
pass adding each block's prefix back in.
"""

import enum

import numpy as np

from .._shared._kernels import get_kernel
from .._shared._stage import BufferSpec, Stage, Staging
from .._shared.params import FilterParameters
from .._shared.utils import (
    ConfigurationError,
    KernelResourceError,
    Workspace,
    _div_ceil,
    _is_power_of_2,
    check_block_shape,
    check_dimensions,
    warn_block_granularity,
)

VALUES_PER_THREAD = 8  # two float4 loads


def _scan_groups(width, group_size):
    """Blocks per row, rounded up to a multiple of 4 for the float4 pass.

    The padding blocks scan past the end of the row, so their totals are
    zero and do not disturb the scan of the totals.
    """
    n_groups = _div_ceil(width, VALUES_PER_THREAD * group_size)
    if n_groups > 1:
        n_groups = _div_ceil(n_groups, 4) * 4
    return n_groups


def _scan_reference(image, scaling=1.0):
    """Serial row-wise inclusive sum, in float64."""
    return np.cumsum(np.asarray(image, dtype=np.float64) * scaling, axis=1)


class Scan(Stage):
    """
    Inclusive prefix sum of every row of a ``(height, width)`` float32 array.

    Parameters
    ----------
    context : Context
        Device and streams to run on.
    staging : Staging, optional
        Host mirrors for ``D_IN`` and/or ``D_OUT``.
    scaling : float, optional
        Factor applied to every value before it is accumulated.
    group_size : int, optional
        Threads per block of the scan kernel, a power of two. Defaults to the
        warp size. One block covers ``8 * group_size`` columns and rows can be
        at most ``(8 * group_size) ** 2`` wide.
    params : FilterParameters, optional
        Shared parameter block; its ``scaling`` field is used.
    name : str, optional
        Label in task graphs.

    Notes
    -----
    Buffers:

    ========= ===== ========================= =======
    role      dir   shape                     dtype
    ========= ===== ========================= =======
    D_IN      in    (height, width)           float32
    D_OUT     out   (height, width)           float32
    D_SUMS    inout (height, n_groups)        float32
    ========= ===== ========================= =======
    """

    class Memory(enum.Enum):
        D_IN = "in"
        D_OUT = "out"
        D_SUMS = "sums"

    _inputs = (Memory.D_IN,)
    _outputs = (Memory.D_OUT,)

    def __init__(
        self,
        context,
        staging=Staging.NONE,
        scaling=1.0,
        group_size=None,
        params=None,
        name=None,
    ):
        super().__init__(context, staging, name)
        if params is None:
            params = FilterParameters(scaling=scaling)
        self.params = params
        if group_size is None:
            group_size = context.warp_size
        self.group_size = int(group_size)
        self.n_groups = None

    @property
    def scaling(self):
        return self.params.scaling

    @scaling.setter
    def scaling(self, value):
        self.params.scaling = value

    def _layout(self):
        w, h = self.width, self.height
        return (
            BufferSpec(self.Memory.D_IN, "in", (h, w), np.float32),
            BufferSpec(self.Memory.D_OUT, "out", (h, w), np.float32),
            BufferSpec(
                self.Memory.D_SUMS, "inout", (h, self.n_groups), np.float32
            ),
        )

    def configure(self, width, height):
        """Allocate buffers and launch shapes for ``(height, width)`` input."""
        check_dimensions(self.name, width, height, (4, 1))
        group_size = self.group_size
        if not _is_power_of_2(group_size):
            raise ConfigurationError(
                f"{self.name}: group_size must be a power of two, got "
                f"{group_size}"
            )
        if 2 * group_size > self.context.max_threads_per_block:
            raise KernelResourceError(
                f"{self.name}: group_size={group_size} needs blocks of "
                f"{2 * group_size} threads, the device allows "
                f"{self.context.max_threads_per_block}"
            )
        shared = 2 * group_size * np.dtype(np.float32).itemsize
        check_block_shape(self.name, (group_size, 1, 1), self.context, shared)
        capacity = VALUES_PER_THREAD * group_size
        if width > capacity * capacity:
            raise ConfigurationError(
                f"{self.name}: rows of {width} values exceed the "
                f"{capacity * capacity} a two-level scan with "
                f"group_size={group_size} can handle"
            )
        warn_block_granularity(self.name, group_size, self.context.warp_size)

        self._begin_configure(width, height)
        self.n_groups = _scan_groups(width, group_size)
        self._allocate()

        self.workspaces = {
            "scan": Workspace(
                (self.n_groups, height, 1), (group_size, 1, 1), shared
            ),
            "scan_sums": Workspace((1, height, 1), (group_size, 1, 1), shared),
            "add_group_sums": Workspace(
                (self.n_groups - 1, height, 1), (2 * group_size, 1, 1), 0
            ),
        }
        self._finish_configure()

    def schedule(self, graph):
        d_in = self.get(self.Memory.D_IN)
        d_out = self.get(self.Memory.D_OUT)
        sums = self.get(self.Memory.D_SUMS)
        n4 = np.int32(self.width // 4)
        ws = self.workspaces

        def scan():
            kernel = get_kernel("scan.cu", "scan_rows")
            kernel(
                ws["scan"].grid,
                ws["scan"].block,
                (
                    d_in,  # in
                    d_out,  # out
                    sums,  # sums
                    n4,  # n4
                    np.float32(self.params.scaling),  # scaling
                ),
                shared_mem=ws["scan"].shared_mem,
            )

        graph.add(f"{self.name}.scan", scan, reads=(d_in,), writes=(d_out, sums))
        if self.n_groups == 1:
            return

        def scan_sums():
            kernel = get_kernel("scan.cu", "scan_rows")
            kernel(
                ws["scan_sums"].grid,
                ws["scan_sums"].block,
                (sums, sums, sums, np.int32(self.n_groups // 4), np.float32(1)),
                shared_mem=ws["scan_sums"].shared_mem,
            )

        def add_group_sums():
            kernel = get_kernel("scan.cu", "add_group_sums")
            kernel(
                ws["add_group_sums"].grid,
                ws["add_group_sums"].block,
                (sums, d_out, n4),
            )

        graph.add(
            f"{self.name}.scan_sums", scan_sums, reads=(sums,), writes=(sums,)
        )
        graph.add(
            f"{self.name}.add_group_sums",
            add_group_sums,
            reads=(sums, d_out),
            writes=(d_out,),
        )
