# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import enum

import numpy as np

from .._shared._stage import BufferSpec, Stage, Staging
from .._shared.params import _check_positive_float32
from .._shared.utils import (
    TILE,
    Workspace,
    _div_ceil,
    _elementwise_workspace,
    check_dimensions,
)
from ._convert import _get_image_kernel

DEFAULT_FOCAL_LENGTH = 595.0  # pixels, Kinect v1 depth camera


def _depth_to_3d_reference(depth, focal_length, scaling=1.0):
    depth = np.asarray(depth, dtype=np.float64) * scaling
    height, width = depth.shape
    rows, cols = np.mgrid[:height, :width]
    x = (cols - (width - 1) / 2) * depth / focal_length
    y = (rows - (height - 1) / 2) * depth / focal_length
    return np.stack([x, y, depth, np.ones_like(depth)], axis=-1)


class Depth(Stage):
    """
    Convert a uint16 depth map to float32, multiplied by `scaling`.

    ``scaling=1e-3`` turns millimetres into metres.
    """

    class Memory(enum.Enum):
        D_IN = "in"
        D_OUT = "out"

    _inputs = (Memory.D_IN,)
    _outputs = (Memory.D_OUT,)

    def __init__(self, context, staging=Staging.NONE, scaling=1.0, name=None):
        super().__init__(context, staging, name)
        self.scaling = scaling

    @property
    def scaling(self):
        return self._scaling

    @scaling.setter
    def scaling(self, value):
        self._scaling = _check_positive_float32("scaling", value)

    def _layout(self):
        plane = (self.height, self.width)
        return (
            BufferSpec(self.Memory.D_IN, "in", plane, np.uint16),
            BufferSpec(self.Memory.D_OUT, "out", plane, np.float32),
        )

    def configure(self, width, height):
        check_dimensions(self.name, width, height)
        self._begin_configure(width, height)
        self._allocate()
        self.workspaces = {
            "depth_to_float": _elementwise_workspace(
                width * height, self.context.warp_size
            )
        }
        self._finish_configure()

    def schedule(self, graph):
        d_in = self.get(self.Memory.D_IN)
        d_out = self.get(self.Memory.D_OUT)
        ws = self.workspaces["depth_to_float"]
        n = np.int32(self.width * self.height)

        def depth_to_float():
            kernel = _get_image_kernel("depth_to_float")
            kernel(
                ws.grid, ws.block, (d_in, d_out, np.float32(self.scaling), n)
            )

        graph.add(
            f"{self.name}.depth_to_float",
            depth_to_float,
            reads=(d_in,),
            writes=(d_out,),
        )


class DepthTo3D(Stage):
    """
    Back-project a float32 depth map to a point cloud.

    Every pixel ``(r, c)`` with depth ``d`` (multiplied by `scaling`) maps to
    the homogeneous point::

        x = (c - (width - 1) / 2) * d / f
        y = (r - (height - 1) / 2) * d / f
        z = d
        w = 1

    stored in a ``(height, width, 4)`` float32 array.

    Parameters
    ----------
    context : Context
        Device and streams to run on.
    staging : Staging, optional
        Host mirrors for ``D_IN`` and/or ``D_OUT``.
    focal_length : float, optional
        Focal length ``f`` in pixels.
    scaling : float, optional
        Factor converting depth values to the unit of the points.
    name : str, optional
        Label in task graphs.
    """

    class Memory(enum.Enum):
        D_IN = "in"
        D_OUT = "out"

    _inputs = (Memory.D_IN,)
    _outputs = (Memory.D_OUT,)

    def __init__(
        self,
        context,
        staging=Staging.NONE,
        focal_length=DEFAULT_FOCAL_LENGTH,
        scaling=1.0,
        name=None,
    ):
        super().__init__(context, staging, name)
        self.focal_length = focal_length
        self.scaling = scaling

    @property
    def focal_length(self):
        return self._focal_length

    @focal_length.setter
    def focal_length(self, value):
        self._focal_length = _check_positive_float32("focal_length", value)

    @property
    def scaling(self):
        return self._scaling

    @scaling.setter
    def scaling(self, value):
        self._scaling = _check_positive_float32("scaling", value)

    def _layout(self):
        plane = (self.height, self.width)
        return (
            BufferSpec(self.Memory.D_IN, "in", plane, np.float32),
            BufferSpec(self.Memory.D_OUT, "out", plane + (4,), np.float32),
        )

    def configure(self, width, height):
        check_dimensions(self.name, width, height)
        self._begin_configure(width, height)
        self._allocate()
        self.workspaces = {
            "depth_to_3d": Workspace(
                (_div_ceil(width, TILE), _div_ceil(height, TILE), 1),
                (TILE, TILE, 1),
                0,
            )
        }
        self._finish_configure()

    def schedule(self, graph):
        depth = self.get(self.Memory.D_IN)
        points = self.get(self.Memory.D_OUT)
        ws = self.workspaces["depth_to_3d"]

        def depth_to_3d():
            kernel = _get_image_kernel("depth_to_3d")
            kernel(
                ws.grid,
                ws.block,
                (
                    depth,  # depth
                    points,  # points
                    np.float32(1.0 / self.focal_length),  # inv_f
                    np.float32(self.scaling),  # scaling
                    np.int32(self.width),  # width
                    np.int32(self.height),  # height
                ),
            )

        graph.add(
            f"{self.name}.depth_to_3d",
            depth_to_3d,
            reads=(depth,),
            writes=(points,),
        )


def _rgbd_to_8d_reference(
    depth, r, g, b, focal_length, scaling=1.0, rgb_norm=False
):
    points = _depth_to_3d_reference(depth, focal_length, scaling)
    rgb = np.stack([r, g, b], axis=-1).astype(np.float64)
    if rgb_norm:
        total = rgb.sum(axis=-1, keepdims=True)
        factor = np.divide(
            1.0, total, out=np.zeros_like(total), where=total != 0
        )
        rgb *= factor
    return np.concatenate([points, rgb, np.ones_like(rgb[..., :1])], axis=-1)


class RGBDTo8D(Stage):
    """
    Fuse a depth map and an RGB image into 8-D feature points.

    Every pixel becomes ``(x, y, z, 1, r, g, b, 1)``: the homogeneous point
    of `DepthTo3D` followed by the pixel's color, replaced by its
    chromaticity (see `RGBNorm`) when ``rgb_norm`` is set. The result is a
    ``(height, width, 8)`` float32 array.

    Parameters
    ----------
    context : Context
        Device and streams to run on.
    staging : Staging, optional
        Host mirrors for the four inputs and/or ``D_OUT``.
    focal_length : float, optional
        Focal length ``f`` in pixels.
    scaling : float, optional
        Factor converting depth values to the unit of the points.
    rgb_norm : bool, optional
        Normalize the colors to chromaticity.
    name : str, optional
        Label in task graphs.
    """

    class Memory(enum.Enum):
        D_IN_D = "in_d"
        D_IN_R = "in_r"
        D_IN_G = "in_g"
        D_IN_B = "in_b"
        D_OUT = "out"

    _inputs = (Memory.D_IN_D, Memory.D_IN_R, Memory.D_IN_G, Memory.D_IN_B)
    _outputs = (Memory.D_OUT,)

    def __init__(
        self,
        context,
        staging=Staging.NONE,
        focal_length=DEFAULT_FOCAL_LENGTH,
        scaling=1.0,
        rgb_norm=False,
        name=None,
    ):
        super().__init__(context, staging, name)
        self.focal_length = focal_length
        self.scaling = scaling
        self.rgb_norm = rgb_norm

    @property
    def focal_length(self):
        return self._focal_length

    @focal_length.setter
    def focal_length(self, value):
        self._focal_length = _check_positive_float32("focal_length", value)

    @property
    def scaling(self):
        return self._scaling

    @scaling.setter
    def scaling(self, value):
        self._scaling = _check_positive_float32("scaling", value)

    @property
    def rgb_norm(self):
        return self._rgb_norm

    @rgb_norm.setter
    def rgb_norm(self, value):
        self._rgb_norm = bool(value)

    def _layout(self):
        plane = (self.height, self.width)
        return tuple(
            BufferSpec(role, "in", plane, np.float32) for role in self._inputs
        ) + (BufferSpec(self.Memory.D_OUT, "out", plane + (8,), np.float32),)

    def configure(self, width, height, rgb_norm=None):
        check_dimensions(self.name, width, height)
        if rgb_norm is not None:
            self.rgb_norm = rgb_norm
        self._begin_configure(width, height)
        self._allocate()
        self.workspaces = {
            "rgbd_to_8d": Workspace(
                (_div_ceil(width, TILE), _div_ceil(height, TILE), 1),
                (TILE, TILE, 1),
                0,
            )
        }
        self._finish_configure()

    def schedule(self, graph):
        inputs = tuple(self.get(role) for role in self._inputs)
        points = self.get(self.Memory.D_OUT)
        ws = self.workspaces["rgbd_to_8d"]

        def rgbd_to_8d():
            kernel = _get_image_kernel("rgbd_to_8d")
            kernel(
                ws.grid,
                ws.block,
                inputs
                + (
                    points,  # points, two float4 per pixel
                    np.float32(1.0 / self.focal_length),  # inv_f
                    np.float32(self.scaling),  # scaling
                    np.int32(self.rgb_norm),  # normalize
                    np.int32(self.width),  # width
                    np.int32(self.height),  # height
                ),
            )

        graph.add(
            f"{self.name}.rgbd_to_8d",
            rgbd_to_8d,
            reads=inputs,
            writes=(points,),
        )
