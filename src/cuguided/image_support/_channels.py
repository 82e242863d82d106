# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Conversions between interleaved RGB images and planar float channels."""

import enum

import numpy as np

from .._shared._stage import BufferSpec, Stage, Staging
from .._shared.utils import _elementwise_workspace, check_dimensions
from ._convert import _check_pixel_dtype, _get_image_kernel


def _separate_rgb_reference(rgb):
    rgb = np.asarray(rgb)
    channels = rgb.astype(np.float32)
    if rgb.dtype.kind == "u":
        channels /= np.iinfo(rgb.dtype).max
    return tuple(np.ascontiguousarray(channels[..., c]) for c in range(3))


class SeparateRGB(Stage):
    """
    Split an interleaved ``(height, width, 3)`` image into float32 planes.

    Parameters
    ----------
    context : Context
        Device and streams to run on.
    staging : Staging, optional
        Host mirrors for ``D_IN`` and/or the three outputs.
    in_dtype : dtype, optional
        Pixel type of the input: float32, or uint8 / uint16, which are
        normalized to [0, 1].
    name : str, optional
        Label in task graphs.
    """

    class Memory(enum.Enum):
        D_IN = "in"
        D_OUT_R = "out_r"
        D_OUT_G = "out_g"
        D_OUT_B = "out_b"

    _inputs = (Memory.D_IN,)
    _outputs = (Memory.D_OUT_R, Memory.D_OUT_G, Memory.D_OUT_B)

    def __init__(
        self, context, staging=Staging.NONE, in_dtype=np.float32, name=None
    ):
        super().__init__(context, staging, name)
        self.in_dtype = _check_pixel_dtype(in_dtype)

    def _layout(self):
        M = self.Memory
        plane = (self.height, self.width)
        return (
            BufferSpec(M.D_IN, "in", plane + (3,), self.in_dtype),
            BufferSpec(M.D_OUT_R, "out", plane, np.float32),
            BufferSpec(M.D_OUT_G, "out", plane, np.float32),
            BufferSpec(M.D_OUT_B, "out", plane, np.float32),
        )

    def configure(self, width, height):
        check_dimensions(self.name, width, height)
        self._begin_configure(width, height)
        self._allocate()
        self.workspaces = {
            "separate_rgb": _elementwise_workspace(
                width * height, self.context.warp_size
            )
        }
        self._finish_configure()

    def schedule(self, graph):
        M = self.Memory
        rgb = self.get(M.D_IN)
        r, g, b = (self.get(role) for role in self._outputs)
        ws = self.workspaces["separate_rgb"]
        n = np.int32(self.width * self.height)

        def separate():
            kernel = _get_image_kernel("separate_rgb", self.in_dtype)
            kernel(ws.grid, ws.block, (rgb, r, g, b, n))

        graph.add(
            f"{self.name}.separate_rgb",
            separate,
            reads=(rgb,),
            writes=(r, g, b),
        )


class CombineRGB(Stage):
    """
    Interleave three float32 planes into a ``(height, width, 3)`` image.

    Parameters
    ----------
    context : Context
        Device and streams to run on.
    staging : Staging, optional
        Host mirrors for the three inputs and/or ``D_OUT``.
    out_dtype : dtype, optional
        Pixel type of the output: float32, or uint8 / uint16, for which
        values in [0, 1] are scaled to the full range, clamped and rounded.
    name : str, optional
        Label in task graphs.
    """

    class Memory(enum.Enum):
        D_IN_R = "in_r"
        D_IN_G = "in_g"
        D_IN_B = "in_b"
        D_OUT = "out"

    _inputs = (Memory.D_IN_R, Memory.D_IN_G, Memory.D_IN_B)
    _outputs = (Memory.D_OUT,)

    def __init__(
        self, context, staging=Staging.NONE, out_dtype=np.float32, name=None
    ):
        super().__init__(context, staging, name)
        self.out_dtype = _check_pixel_dtype(out_dtype)

    def _layout(self):
        M = self.Memory
        plane = (self.height, self.width)
        return (
            BufferSpec(M.D_IN_R, "in", plane, np.float32),
            BufferSpec(M.D_IN_G, "in", plane, np.float32),
            BufferSpec(M.D_IN_B, "in", plane, np.float32),
            BufferSpec(M.D_OUT, "out", plane + (3,), self.out_dtype),
        )

    def configure(self, width, height):
        check_dimensions(self.name, width, height)
        self._begin_configure(width, height)
        self._allocate()
        self.workspaces = {
            "combine_rgb": _elementwise_workspace(
                width * height, self.context.warp_size
            )
        }
        self._finish_configure()

    def schedule(self, graph):
        r, g, b = (self.get(role) for role in self._inputs)
        rgb = self.get(self.Memory.D_OUT)
        ws = self.workspaces["combine_rgb"]
        n = np.int32(self.width * self.height)

        def combine():
            kernel = _get_image_kernel(
                "combine_rgb", np.float32, self.out_dtype
            )
            kernel(ws.grid, ws.block, (r, g, b, rgb, n))

        graph.add(
            f"{self.name}.combine_rgb",
            combine,
            reads=(r, g, b),
            writes=(rgb,),
        )


class RGBNorm(Stage):
    """
    Chromaticity of three float32 planes: each divided by their sum.

    Pixels whose channels sum to zero map to zero.
    """

    class Memory(enum.Enum):
        D_IN_R = "in_r"
        D_IN_G = "in_g"
        D_IN_B = "in_b"
        D_OUT_R = "out_r"
        D_OUT_G = "out_g"
        D_OUT_B = "out_b"

    _inputs = (Memory.D_IN_R, Memory.D_IN_G, Memory.D_IN_B)
    _outputs = (Memory.D_OUT_R, Memory.D_OUT_G, Memory.D_OUT_B)

    def _layout(self):
        plane = (self.height, self.width)
        return tuple(
            BufferSpec(role, "in", plane, np.float32) for role in self._inputs
        ) + tuple(
            BufferSpec(role, "out", plane, np.float32)
            for role in self._outputs
        )

    def configure(self, width, height):
        check_dimensions(self.name, width, height)
        self._begin_configure(width, height)
        self._allocate()
        self.workspaces = {
            "rgb_norm": _elementwise_workspace(
                width * height, self.context.warp_size
            )
        }
        self._finish_configure()

    def schedule(self, graph):
        inputs = tuple(self.get(role) for role in self._inputs)
        outputs = tuple(self.get(role) for role in self._outputs)
        ws = self.workspaces["rgb_norm"]
        n = np.int32(self.width * self.height)

        def rgb_norm():
            kernel = _get_image_kernel("rgb_norm")
            kernel(ws.grid, ws.block, inputs + outputs + (n,))

        graph.add(
            f"{self.name}.rgb_norm", rgb_norm, reads=inputs, writes=outputs
        )
