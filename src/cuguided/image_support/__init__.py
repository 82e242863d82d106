# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Pixel format adapters feeding the filters and consuming their output."""

__all__ = [
    "CombineRGB",
    "Depth",
    "DepthTo3D",
    "RGBDTo8D",
    "RGBNorm",
    "SeparateRGB",
]

from ._channels import CombineRGB, RGBNorm, SeparateRGB
from ._depth import Depth, DepthTo3D, RGBDTo8D
