# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import enum

import numpy as np

from .._shared._kernels import get_kernel
from .._shared._stage import BufferSpec, Stage, Staging
from .._shared.utils import (
    ConfigurationError,
    Workspace,
    _largest_tile_side,
    check_block_shape,
    check_dimensions,
    warn_block_granularity,
)


class Transpose(Stage):
    """
    Out-of-place transpose of a ``(height, width)`` float32 array.

    Both dimensions must be multiples of 4. Blocks are square tiles of
    ``L x L`` threads, each moving one 4x4 sub-block, where ``L`` is the
    largest power of two <= 16 dividing both ``width / 4`` and
    ``height / 4``. The output has shape ``(width, height)``.

    Notes
    -----
    Buffers:

    ===== ==== =============== =======
    role  dir  shape           dtype
    ===== ==== =============== =======
    D_IN  in   (height, width) float32
    D_OUT out  (width, height) float32
    ===== ==== =============== =======
    """

    class Memory(enum.Enum):
        D_IN = "in"
        D_OUT = "out"

    _inputs = (Memory.D_IN,)
    _outputs = (Memory.D_OUT,)

    def __init__(self, context, staging=Staging.NONE, name=None):
        super().__init__(context, staging, name)
        self.tile_side = None

    def _layout(self):
        w, h = self.width, self.height
        return (
            BufferSpec(self.Memory.D_IN, "in", (h, w), np.float32),
            BufferSpec(self.Memory.D_OUT, "out", (w, h), np.float32),
        )

    def configure(self, width, height):
        check_dimensions(self.name, width, height, (4, 4))
        side = _largest_tile_side(width // 4, height // 4)
        if side == 1:
            raise ConfigurationError(
                f"{self.name}: no tile side between 2 and 16 divides both "
                f"width/4={width // 4} and height/4={height // 4}"
            )
        shared = 16 * side * side * np.dtype(np.float32).itemsize
        check_block_shape(self.name, (side, side, 1), self.context, shared)
        warn_block_granularity(self.name, side * side, self.context.warp_size)

        self._begin_configure(width, height)
        self.tile_side = side
        self._allocate()
        self.workspaces = {
            "transpose": Workspace(
                (width // 4 // side, height // 4 // side, 1),
                (side, side, 1),
                shared,
            )
        }
        self._finish_configure()

    def schedule(self, graph):
        d_in = self.get(self.Memory.D_IN)
        d_out = self.get(self.Memory.D_OUT)
        ws = self.workspaces["transpose"]
        n4_x = np.int32(self.width // 4)
        n4_y = np.int32(self.height // 4)

        def transpose():
            kernel = get_kernel("transpose.cu", "transpose")
            kernel(
                ws.grid,
                ws.block,
                (d_in, d_out, n4_x, n4_y),
                shared_mem=ws.shared_mem,
            )

        graph.add(
            f"{self.name}.transpose", transpose, reads=(d_in,), writes=(d_out,)
        )
