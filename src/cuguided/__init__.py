# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
GPU guided image filter with O(1) summed-area-table box filters.

Subpackages
-----------
primitives
    Prefix scan, transpose, summed-area table and element-wise arithmetic.
filters
    Box filters and the guided filter, as stages and as functions.
image_support
    RGB and depth format adapters.
pipelines
    Ready-made RGB and depth pipelines.
"""

# Explicitly setting `__all__` is necessary for type inference engines
# to know which symbols are exported. See
# https://peps.python.org/pep-0484/#stub-files

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "Context",
    "FilterParameters",
    "KernelResourceError",
    "Stage",
    "Staging",
    "TaskGraph",
    "box_filter",
    "filters",
    "guided_filter",
    "image_support",
    "pipelines",
    "primitives",
]

from . import filters, image_support, pipelines, primitives
from ._shared._context import Context
from ._shared._graph import TaskGraph
from ._shared._stage import Stage, Staging
from ._shared.params import FilterParameters
from ._shared.utils import ConfigurationError, KernelResourceError
from .filters import box_filter, guided_filter
