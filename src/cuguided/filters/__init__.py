# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

__all__ = [
    "BoxFilter",
    "BoxFilterSAT",
    "GuidedFilter",
    "box_filter",
    "guided_filter",
]

from ._box_filter import BoxFilter, BoxFilterSAT, box_filter
from ._guided_filter import GuidedFilter, guided_filter
