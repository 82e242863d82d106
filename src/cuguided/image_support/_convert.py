# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Pixel type dispatch for the format conversion kernels."""

import numpy as np

from .._shared._kernels import get_kernel
from .._shared.utils import _dtype_to_cuda_type

# dtype -> (value of full intensity, conversion of a [0, 1] float to dtype)
_PIXEL_FORMATS = {
    np.dtype(np.uint8): (
        255.0,
        "(unsigned char)rintf(fminf(fmaxf((x) * 255.f, 0.f), 255.f))",
    ),
    np.dtype(np.uint16): (
        65535.0,
        "(unsigned short)rintf(fminf(fmaxf((x) * 65535.f, 0.f), 65535.f))",
    ),
    np.dtype(np.float32): (1.0, "(x)"),
}


def _check_pixel_dtype(dtype):
    dtype = np.dtype(dtype)
    if dtype not in _PIXEL_FORMATS:
        supported = ", ".join(str(d) for d in _PIXEL_FORMATS)
        raise TypeError(
            f"unsupported pixel dtype {dtype}; supported: {supported}"
        )
    return dtype


def _gen_image_preamble(in_dtype=np.float32, out_dtype=np.float32):
    """
    Generate the ``#define`` statements typing the conversion kernels.

    Parameters
    ----------
    in_dtype : numpy dtype
        Element type of interleaved input. Integer values are normalized to
        [0, 1] by their full-intensity value.
    out_dtype : numpy dtype
        Element type of interleaved output. Floats in [0, 1] are scaled to
        the full integer range, clamped and rounded.

    Returns
    -------
    preamble : str
    """
    in_dtype = _check_pixel_dtype(in_dtype)
    out_dtype = _check_pixel_dtype(out_dtype)
    in_full, _ = _PIXEL_FORMATS[in_dtype]
    _, out_convert = _PIXEL_FORMATS[out_dtype]
    return f"""
#define IN_T {_dtype_to_cuda_type(in_dtype)}
#define IN_NORM {1.0 / in_full!r}f
#define OUT_T {_dtype_to_cuda_type(out_dtype)}
#define OUT_CONVERT(x) {out_convert}
"""


def _get_image_kernel(name, in_dtype=np.float32, out_dtype=np.float32):
    preamble = _gen_image_preamble(in_dtype, out_dtype)
    return get_kernel("image_support.cu", name, preamble)
