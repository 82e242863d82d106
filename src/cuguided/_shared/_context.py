# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import cupy as cp


class Context:
    """
    Execution context shared by the stages of a pipeline.

    Holds the device and the non-blocking streams that task graphs dispatch
    kernels on, and records the device limits the stages validate their
    launch shapes against.

    Parameters
    ----------
    device : int or cupy.cuda.Device, optional
        Device to run on. Defaults to the current CuPy device.
    n_streams : int, optional
        Number of concurrent streams. Two are enough to overlap the
        independent box filters of a guided filter.
    """

    def __init__(self, device=None, n_streams=2):
        if n_streams < 1:
            raise ValueError(f"n_streams must be at least 1, got {n_streams}")
        if isinstance(device, cp.cuda.Device):
            self.device = device
        else:
            self.device = cp.cuda.Device(device)

        attributes = self.device.attributes
        # preferred granularity of a block size
        self.warp_size = attributes["WarpSize"]
        self.max_threads_per_block = attributes["MaxThreadsPerBlock"]
        self.max_block_dims = (
            attributes["MaxBlockDimX"],
            attributes["MaxBlockDimY"],
            attributes["MaxBlockDimZ"],
        )
        self.max_shared_memory = attributes["MaxSharedMemoryPerBlock"]

        with self.device:
            self.streams = tuple(
                cp.cuda.Stream(non_blocking=True) for _ in range(n_streams)
            )

    @property
    def stream(self):
        """Primary stream, used for host transfers and to join task graphs."""
        return self.streams[0]

    def synchronize(self):
        """Block until every stream of the context is idle."""
        for stream in self.streams:
            stream.synchronize()

    def __repr__(self):
        return (
            f"Context(device={self.device.id}, n_streams={len(self.streams)})"
        )


@cp.memoize(for_each_device=True)
def default_context():
    """Context of the current device shared by the functional API."""
    return Context()
