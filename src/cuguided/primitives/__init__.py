# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Building blocks of the summed-area table: scan, transpose and arithmetic."""

__all__ = [
    "SAT",
    "Mult",
    "Pown",
    "Scan",
    "Transpose",
]

from ._arith import Mult, Pown
from ._sat import SAT
from ._scan import Scan
from ._transpose import Transpose
