# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

__all__ = [
    "GuidedFilterDepth",
    "GuidedFilterRGB",
]

from ._depth import GuidedFilterDepth
from ._rgb import GuidedFilterRGB
