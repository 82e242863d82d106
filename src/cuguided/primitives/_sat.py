# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Summed-area tables built from row scans and transposes.

- Crow, F. C. (1984). "Summed-area tables for texture mapping".
  SIGGRAPH Computer Graphics 18(3), 207-212.
"""

import enum

import numpy as np

from .._shared._stage import Stage, Staging
from .._shared.params import FilterParameters
from .._shared.utils import check_dimensions
from ._scan import Scan
from ._transpose import Transpose


def _sat_reference(image, scaling=1.0):
    """``S[r, c] = sum(image[:r + 1, :c + 1]) * scaling``, in float64."""
    image = np.asarray(image, dtype=np.float64) * scaling
    return image.cumsum(axis=0).cumsum(axis=1)


class SAT(Stage):
    """
    Summed-area table of a ``(height, width)`` float32 array.

    The rows are scanned, the result transposed and its rows (the input
    columns) scanned again. With ``transposed=True`` the table is left in
    that orientation, ``D_OUT[c, r] = S[r, c]`` with shape
    ``(width, height)``, which saves one launch for consumers that read it
    that way. Otherwise a final transpose restores ``D_OUT[r, c] = S[r, c]``.

    Parameters
    ----------
    context : Context
        Device and streams to run on.
    staging : Staging, optional
        Host mirrors for ``D_IN`` and/or ``D_OUT``.
    transposed : bool, optional
        Leave the table transposed.
    scaling : float, optional
        Applied to the input before summation, by the row scan only.
    params : FilterParameters, optional
        Shared parameter block; its ``scaling`` field is used.
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
        transposed=True,
        scaling=1.0,
        params=None,
        name=None,
    ):
        super().__init__(context, staging, name)
        if params is None:
            params = FilterParameters(scaling=scaling)
        self.params = params
        self._transposed = bool(transposed)
        self.scan_rows = Scan(
            context, params=self.params, name=f"{self.name}.scan_rows"
        )
        self.transpose = Transpose(context, name=f"{self.name}.transpose")
        # the data is already scaled
        self.scan_cols = Scan(
            context, scaling=1.0, name=f"{self.name}.scan_cols"
        )
        if self._transposed:
            self.transpose_back = None
        else:
            self.transpose_back = Transpose(
                context, name=f"{self.name}.transpose_back"
            )

    @property
    def transposed(self):
        return self._transposed

    @property
    def layout(self):
        return "transposed" if self._transposed else "row-major"

    @property
    def scaling(self):
        return self.params.scaling

    @scaling.setter
    def scaling(self, value):
        self.params.scaling = value

    def _stages(self):
        stages = [self.scan_rows, self.transpose, self.scan_cols]
        if self.transpose_back is not None:
            stages.append(self.transpose_back)
        return stages

    def _delegates(self):
        last = self._stages()[-1]
        return {
            self.Memory.D_IN: (self.scan_rows, Scan.Memory.D_IN),
            self.Memory.D_OUT: (last, last.Memory.D_OUT),
        }

    def configure(self, width, height):
        check_dimensions(self.name, width, height, (4, 4))
        self._begin_configure(width, height)

        self.scan_rows.configure(width, height)
        self.transpose._link(
            Transpose.Memory.D_IN, self.scan_rows.get(Scan.Memory.D_OUT)
        )
        self.transpose.configure(width, height)
        self.scan_cols._link(
            Scan.Memory.D_IN, self.transpose.get(Transpose.Memory.D_OUT)
        )
        self.scan_cols.configure(height, width)
        if self.transpose_back is not None:
            self.transpose_back._link(
                Transpose.Memory.D_IN, self.scan_cols.get(Scan.Memory.D_OUT)
            )
            self.transpose_back.configure(height, width)

        self._finish_configure()

    def schedule(self, graph):
        for stage in self._stages():
            stage.schedule(graph)
