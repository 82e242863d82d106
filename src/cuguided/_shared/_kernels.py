# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Loading and compilation of the CUDA sources under ``cuguided/cuda``."""

import os

import cupy as cp

KERNEL_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "cuda")

COMPILE_OPTIONS = ("--std=c++17",)


def _read_source(filename):
    with open(os.path.join(KERNEL_DIR, filename)) as f:
        return f.read()


@cp.memoize(for_each_device=True)
def get_kernel(filename, name, preamble=""):
    """
    Get a compiled kernel from one of the package's ``.cu`` sources.

    Parameters
    ----------
    filename : str
        Source file under ``cuguided/cuda``.
    name : str
        ``extern "C"`` name of the kernel.
    preamble : str
        Code prepended to the source, typically ``#define`` statements
        selecting element types.

    Returns
    -------
    kernel : cp.RawKernel
        Compiled CUDA kernel. Kernels sharing a source and preamble share one
        compiled module.
    """
    return cp.RawKernel(
        code=preamble + _read_source(filename),
        name=name,
        options=COMPILE_OPTIONS,
    )
