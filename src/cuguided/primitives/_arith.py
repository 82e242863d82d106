# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Element-wise products and integer powers over float4 vectors."""

import enum

import numpy as np

from .._shared._kernels import get_kernel
from .._shared._stage import BufferSpec, Stage, Staging
from .._shared.utils import (
    _elementwise_workspace,
    check_dimensions,
    check_vector_size,
)


class Mult(Stage):
    """
    Element-wise product ``D_OUT = D_IN1 * D_IN2`` of two float32 images.

    ``width * height`` must be a multiple of 4. The two inputs may be the
    same buffer, which squares it.
    """

    class Memory(enum.Enum):
        D_IN1 = "in1"
        D_IN2 = "in2"
        D_OUT = "out"

    _inputs = (Memory.D_IN1, Memory.D_IN2)
    _outputs = (Memory.D_OUT,)

    def _layout(self):
        shape = (self.height, self.width)
        return (
            BufferSpec(self.Memory.D_IN1, "in", shape, np.float32),
            BufferSpec(self.Memory.D_IN2, "in", shape, np.float32),
            BufferSpec(self.Memory.D_OUT, "out", shape, np.float32),
        )

    def configure(self, width, height):
        check_dimensions(self.name, width, height)
        check_vector_size(self.name, width, height)
        self._begin_configure(width, height)
        self._allocate()
        self.workspaces = {
            "mult": _elementwise_workspace(
                width * height // 4, self.context.warp_size
            )
        }
        self._finish_configure()

    def schedule(self, graph):
        a = self.get(self.Memory.D_IN1)
        b = self.get(self.Memory.D_IN2)
        out = self.get(self.Memory.D_OUT)
        ws = self.workspaces["mult"]
        n4 = np.int32(a.size // 4)

        def mult():
            kernel = get_kernel("math.cu", "mult")
            kernel(ws.grid, ws.block, (a, b, out, n4))

        graph.add(f"{self.name}.mult", mult, reads=(a, b), writes=(out,))


class Pown(Stage):
    """
    Element-wise integer power ``D_OUT = D_IN ** n`` of a float32 image.

    Negative exponents give reciprocals. ``width * height`` must be a
    multiple of 4.
    """

    class Memory(enum.Enum):
        D_IN = "in"
        D_OUT = "out"

    _inputs = (Memory.D_IN,)
    _outputs = (Memory.D_OUT,)

    def __init__(self, context, staging=Staging.NONE, n=2, name=None):
        super().__init__(context, staging, name)
        self.n = n

    @property
    def n(self):
        return self._n

    @n.setter
    def n(self, value):
        if int(value) != value:
            raise ValueError(f"exponent must be an integer, got {value}")
        self._n = int(value)

    def _layout(self):
        shape = (self.height, self.width)
        return (
            BufferSpec(self.Memory.D_IN, "in", shape, np.float32),
            BufferSpec(self.Memory.D_OUT, "out", shape, np.float32),
        )

    def configure(self, width, height):
        check_dimensions(self.name, width, height)
        check_vector_size(self.name, width, height)
        self._begin_configure(width, height)
        self._allocate()
        self.workspaces = {
            "pown": _elementwise_workspace(
                width * height // 4, self.context.warp_size
            )
        }
        self._finish_configure()

    def schedule(self, graph):
        d_in = self.get(self.Memory.D_IN)
        d_out = self.get(self.Memory.D_OUT)
        ws = self.workspaces["pown"]
        n4 = np.int32(d_in.size // 4)

        def pown():
            kernel = get_kernel("math.cu", "pown")
            kernel(ws.grid, ws.block, (d_in, d_out, np.int32(self.n), n4))

        graph.add(f"{self.name}.pown", pown, reads=(d_in,), writes=(d_out,))
