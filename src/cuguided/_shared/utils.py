# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Error types, launch geometry helpers and dtype dispatch shared by all stages."""

import math
from collections import namedtuple
from warnings import warn

import numpy as np

# =============================================================================
# Constants
# =============================================================================

TILE = 16  # side of the fixed 16x16 box filter tiles
DEFAULT_BOX_SCALING = 1e-4
ELEMENTWISE_WARPS = 8  # warps per block for the 1-D element-wise kernels

# Launch descriptor: grid and block in CUDA (x, y, z) order, shared memory in
# bytes. The global extent of a launch is grid * block along each axis.
Workspace = namedtuple("Workspace", ["grid", "block", "shared_mem"])


class ConfigurationError(ValueError):
    """Raised when a stage cannot be configured for the requested shape.

    Covers zero-sized dimensions, divisibility violations, buffers aliased
    with the wrong size or dtype and mismatched SAT orientations. These are
    detected eagerly by ``configure`` and never fall back to another
    algorithm.
    """


class KernelResourceError(RuntimeError):
    """Raised when the device cannot host a kernel's fixed block shape."""


# =============================================================================
# Utility Functions
# =============================================================================


def _div_ceil(a, b):
    """Integer division rounding up."""
    return (a + b - 1) // b


def _is_power_of_2(v):
    return v > 0 and (v & (v - 1)) == 0


def _largest_tile_side(a, b, max_side=TILE):
    """Largest power of two <= `max_side` dividing both `a` and `b`.

    Returns 1 when no larger side divides both.
    """
    side = max_side
    while side > 1:
        if a % side == 0 and b % side == 0:
            return side
        side //= 2
    return 1


def _dtype_to_cuda_type(dtype):
    """Convert numpy/cupy dtype to CUDA type string."""
    dtype = np.dtype(dtype)
    type_map = {
        np.uint8: "unsigned char",
        np.uint16: "unsigned short",
        np.int32: "int",
        np.float32: "float",
    }
    if dtype.type not in type_map:
        raise TypeError(f"Unsupported dtype: {dtype}")
    return type_map[dtype.type]


def _elementwise_workspace(n, warp_size):
    """1-D launch covering `n` work-items with blocks of a few warps."""
    block = ELEMENTWISE_WARPS * warp_size
    return Workspace((_div_ceil(n, block), 1, 1), (block, 1, 1), 0)


# =============================================================================
# Validation
# =============================================================================


def check_dimensions(stage, width, height, multiple_of=(1, 1)):
    """Validate image dimensions against a stage's tiling constraint.

    Parameters
    ----------
    stage : str
        Name used in the error message.
    width, height : int
        Image dimensions.
    multiple_of : tuple of int
        Required divisors of ``(width, height)``.

    Raises
    ------
    ConfigurationError
        If a dimension is not positive or violates the divisibility rule.
    """
    if width <= 0 or height <= 0:
        raise ConfigurationError(
            f"{stage}: image dimensions must be positive, got "
            f"{width}x{height}"
        )
    mx, my = multiple_of
    if width % mx or height % my:
        raise ConfigurationError(
            f"{stage}: width must be a multiple of {mx} and height a multiple "
            f"of {my}, got {width}x{height}"
        )


def check_vector_size(stage, width, height):
    """The element-wise kernels process ``float4`` vectors."""
    if (width * height) % 4:
        raise ConfigurationError(
            f"{stage}: width * height must be a multiple of 4, got "
            f"{width}x{height}"
        )


def check_block_shape(stage, block, context, shared_mem=0):
    """
    Check that `context`'s device can launch blocks of shape `block` using
    `shared_mem` bytes of shared memory each.
    """
    threads = math.prod(block)
    limits = context.max_block_dims
    if threads > context.max_threads_per_block or any(
        b > limit for b, limit in zip(block, limits)
    ):
        raise KernelResourceError(
            f"{stage}: the device supports at most "
            f"{context.max_threads_per_block} threads per block with "
            f"dimensions {limits}; block {block} is required"
        )
    if shared_mem > context.max_shared_memory:
        raise KernelResourceError(
            f"{stage}: blocks need {shared_mem} bytes of shared memory, the "
            f"device allows {context.max_shared_memory}"
        )


def warn_block_granularity(stage, threads, warp_size):
    """Warn when a block size is not a multiple of the warp size."""
    if threads % warp_size:
        warn(
            f"{stage}: a block of {threads} threads is not a multiple of the "
            f"warp size ({warp_size}); part of every warp will idle",
            stacklevel=3,
        )
