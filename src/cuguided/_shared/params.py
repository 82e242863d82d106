# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import math

import numpy as np

from .utils import DEFAULT_BOX_SCALING


def _check_positive_float32(name, value):
    value = float(value)
    # the kernels receive both the value and its reciprocal as float32
    if not value > 0 or np.float32(value) == 0 or math.isinf(np.float32(value)):
        raise ValueError(
            f"{name} must be a positive value representable in float32, "
            f"got {value}"
        )
    if math.isinf(np.float32(1.0 / value)):
        raise ValueError(f"{name}={value} is too small: 1/{name} overflows")
    return value


class FilterParameters:
    """
    Scalar parameters shared by every stage of one pipeline.

    A composite stage hands the same instance to all of its sub-stages, and
    kernels read the current values when their launch is issued. Updating a
    field after ``configure`` therefore reaches every box filter and kernel of
    the pipeline on the next run.

    Parameters
    ----------
    radius : int
        Box filter radius; the window is ``(2 * radius + 1)`` pixels wide.
    eps : float
        Guided filter regularization. ``numpy.inf`` is accepted.
    zero_out : bool
        Force the output to zero wherever the input is exactly zero.
    scaling : float
        Factor applied to the data before it is summed into a SAT, and undone
        by the box filter. Keeps float32 partial sums in range.
    output_scaling : float
        Factor applied to the guided filter output.
    """

    def __init__(
        self,
        radius=1,
        eps=0.01,
        zero_out=False,
        scaling=DEFAULT_BOX_SCALING,
        output_scaling=1.0,
    ):
        self.radius = radius
        self.eps = eps
        self.zero_out = zero_out
        self.scaling = scaling
        self.output_scaling = output_scaling

    @property
    def radius(self):
        return self._radius

    @radius.setter
    def radius(self, value):
        if int(value) != value or value < 0:
            raise ValueError(
                f"radius must be a non-negative integer, got {value}"
            )
        self._radius = int(value)

    @property
    def eps(self):
        return self._eps

    @eps.setter
    def eps(self, value):
        value = float(value)
        if not value >= 0:
            raise ValueError(f"eps must be non-negative, got {value}")
        self._eps = value

    @property
    def zero_out(self):
        return self._zero_out

    @zero_out.setter
    def zero_out(self, value):
        self._zero_out = bool(value)

    @property
    def scaling(self):
        return self._scaling

    @scaling.setter
    def scaling(self, value):
        self._scaling = _check_positive_float32("scaling", value)

    @property
    def output_scaling(self):
        return self._output_scaling

    @output_scaling.setter
    def output_scaling(self, value):
        self._output_scaling = _check_positive_float32("output_scaling", value)

    def __repr__(self):
        return (
            f"FilterParameters(radius={self.radius}, eps={self.eps}, "
            f"zero_out={self.zero_out}, scaling={self.scaling}, "
            f"output_scaling={self.output_scaling})"
        )
