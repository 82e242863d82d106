# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Buffer bookkeeping and lifecycle common to every pipeline stage.

A stage declares its buffers as a table of `BufferSpec` rows instead of
allocating them by hand. The base class allocates the rows the caller did not
alias, validates the ones it did, maps the staging mirrors and runs the
stage's task graph. A stage's life is:

1. construction, bound to a `Context`;
2. optional aliasing with ``set(role, array)``, e.g. to chain the output of
   one stage into the input of the next without a copy;
3. ``configure(width, height, ...)``, which freezes buffer identities and
   may be repeated only to resize;
4. any number of ``write`` / ``run`` / ``read`` cycles.
"""

import enum
import math
from collections import namedtuple

import cupy as cp
import cupyx
import numpy as np

from ._graph import TaskGraph
from .utils import ConfigurationError

# One row of a stage's buffer layout. `direction` is "in", "out" or "inout"
# and `shape` is the concrete array shape for the configured dimensions.
BufferSpec = namedtuple("BufferSpec", ["role", "direction", "shape", "dtype"])


class Staging(enum.Enum):
    """Which directions get page-locked host mirrors for their buffers."""

    NONE = 0
    I = 1  # noqa: E741
    O = 2  # noqa: E741
    IO = 3

    @property
    def input(self):
        return self in (Staging.I, Staging.IO)

    @property
    def output(self):
        return self in (Staging.O, Staging.IO)


class Stage:
    """
    Base class of all pipeline stages.

    Subclasses define a ``Memory`` enum naming their buffer roles and
    implement `_layout`, ``configure`` and `schedule`. Composite stages map
    some of their roles onto roles of their sub-stages in `_delegates`.

    Parameters
    ----------
    context : Context
        Device and streams the stage runs on.
    staging : Staging, optional
        Which of the input and output roles get pinned host mirrors.
    name : str, optional
        Label of the stage in task graphs and error messages.
    """

    Memory = None
    _inputs = ()
    _outputs = ()

    def __init__(self, context, staging=Staging.NONE, name=None):
        self.context = context
        self.staging = Staging(staging)
        self.name = type(self).__name__ if name is None else name
        self.width = None
        self.height = None
        self.workspaces = {}
        self.transfer_event = None
        self._buffers = {}
        self._aliased = set()
        self._host = {}
        self._configured = False
        self._graph = None
        self._pending = []
        self._done = None

    # -------------------------------------------------------------------------
    # Layout
    # -------------------------------------------------------------------------

    def _layout(self):
        """Buffers owned by this stage, as `BufferSpec` rows."""
        return ()

    def _delegates(self):
        """Map of role -> (sub-stage, role) for buffers held by sub-stages."""
        return {}

    def _role(self, role):
        if isinstance(role, str):
            return self.Memory[role]
        if not isinstance(role, self.Memory):
            raise KeyError(f"{self.name} has no buffer role {role!r}")
        return role

    # -------------------------------------------------------------------------
    # Named-memory accessor
    # -------------------------------------------------------------------------

    def get(self, role):
        """Device array currently filling `role`."""
        role = self._role(role)
        delegate = self._delegates().get(role)
        if delegate is not None:
            stage, stage_role = delegate
            return stage.get(stage_role)
        try:
            return self._buffers[role]
        except KeyError:
            raise KeyError(
                f"{self.name}: {role.name} is not allocated; call configure() "
                "first or assign a buffer with set()"
            ) from None

    def set(self, role, array):
        """
        Alias `array` as the buffer of `role`.

        Only allowed before ``configure``, which freezes buffer identities.
        The array must match the role's dtype and element count.
        """
        if self._configured:
            raise ConfigurationError(
                f"{self.name}: buffers can only be aliased before configure()"
            )
        self._link(self._role(role), array)

    def _link(self, role, array):
        if not isinstance(array, cp.ndarray):
            raise TypeError(
                f"{self.name}: {role.name} must be a cupy.ndarray, got "
                f"{type(array).__name__}"
            )
        delegate = self._delegates().get(role)
        if delegate is not None:
            stage, stage_role = delegate
            stage._link(stage_role, array)
            return
        self._buffers[role] = array
        self._aliased.add(role)

    def host(self, role):
        """Pinned host mirror of `role`, for filling or reading in place."""
        role = self._role(role)
        try:
            return self._host[role]
        except KeyError:
            raise ValueError(
                f"{self.name}: {role.name} has no staging buffer (staging="
                f"{self.staging.name})"
            ) from None

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def _begin_configure(self, width, height):
        self._configured = False
        self._graph = None
        self._done = None
        self.width = int(width)
        self.height = int(height)

    def _allocate(self):
        with self.context.device:
            for spec in self._layout():
                shape = tuple(int(n) for n in spec.shape)
                dtype = np.dtype(spec.dtype)
                if spec.role in self._aliased:
                    array = self._check_alias(spec.role, shape, dtype)
                else:
                    array = cp.empty(shape, dtype=dtype)
                self._buffers[spec.role] = array

    def _check_alias(self, role, shape, dtype):
        array = self._buffers[role]
        size = math.prod(shape)
        if (
            array.dtype != dtype
            or array.size != size
            or not array.flags.c_contiguous
        ):
            raise ConfigurationError(
                f"{self.name}: {role.name} must be a C-contiguous {dtype} "
                f"array of {size} elements, got {array.dtype} with shape "
                f"{array.shape}"
            )
        if array.device.id != self.context.device.id:
            raise ConfigurationError(
                f"{self.name}: {role.name} lives on device {array.device.id} "
                f"but the stage runs on device {self.context.device.id}"
            )
        return array.reshape(shape)

    def _finish_configure(self):
        self._host = {}
        roles = ()
        if self.staging.input:
            roles += tuple(self._inputs)
        if self.staging.output:
            roles += tuple(self._outputs)
        for role in roles:
            device = self.get(role)
            self._host[role] = cupyx.empty_pinned(
                device.shape, dtype=device.dtype
            )
        self._configured = True

    def _check_configured(self):
        if not self._configured:
            raise RuntimeError(
                f"{self.name}.configure() must be called before running it"
            )

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def schedule(self, graph):
        """Append this stage's launches to `graph`."""
        raise NotImplementedError

    @property
    def graph(self):
        """Task graph of this stage, built on first use after configure."""
        self._check_configured()
        if self._graph is None:
            self._graph = TaskGraph(self.context)
            self.schedule(self._graph)
        return self._graph

    def run(self, wait_for=()):
        """
        Launch the stage's kernels asynchronously.

        Parameters
        ----------
        wait_for : sequence of cupy.cuda.Event, optional
            Events of upstream producers. Transfers issued with `write` on
            this stage are waited on automatically.

        Returns
        -------
        done : cupy.cuda.Event
            Completion event of the whole stage.
        """
        graph = self.graph
        waits = list(wait_for) + self._pending
        self._pending = []
        self._done = graph.submit(waits)
        return self._done

    def write(self, role=None, data=None, wait_for=()):
        """
        Copy data into a device buffer on the primary stream.

        A device array is copied device-to-device once the caller's current
        stream has produced it, bypassing any staging mirror. For host data
        with a staging mirror for `role`, `data` (if given) is first copied
        into the mirror and the transfer to the device is asynchronous.
        Without a mirror, `data` is required.

        Returns
        -------
        event : cupy.cuda.Event
            Completion event of the transfer. The next `run` waits on it.
        """
        self._check_configured()
        role = self._inputs[0] if role is None else self._role(role)
        device = self.get(role)
        host = self._host.get(role)
        stream = self.context.stream
        with self.context.device:
            for event in wait_for:
                stream.wait_event(event)
            if isinstance(data, cp.ndarray):
                # the non-blocking stream does not wait for the producer
                stream.wait_event(cp.cuda.get_current_stream().record())
                with stream:
                    device[...] = data.reshape(device.shape)
            elif host is not None:
                if data is not None:
                    host[...] = np.asarray(data).reshape(host.shape)
                device.set(host, stream=stream)
            elif data is None:
                raise ValueError(
                    f"{self.name}: {role.name} has no staging buffer, pass "
                    "the data to write"
                )
            else:
                data = np.ascontiguousarray(data, dtype=device.dtype)
                device.set(data.reshape(device.shape), stream=stream)
            event = cp.cuda.Event(disable_timing=True)
            event.record(stream)
        self._pending.append(event)
        self.transfer_event = event
        return event

    def read(self, role=None, block=True, wait_for=()):
        """
        Copy a device buffer to the host on the primary stream.

        The copy waits for the last `run` of this stage. With a staging mirror
        the data lands in the mirror, and ``block=False`` returns immediately;
        the mirror is valid once `transfer_event` has completed.

        Returns
        -------
        out : numpy.ndarray
        """
        self._check_configured()
        role = self._outputs[0] if role is None else self._role(role)
        device = self.get(role)
        host = self._host.get(role)
        stream = self.context.stream
        waits = list(wait_for)
        if self._done is not None:
            waits.append(self._done)
        with self.context.device:
            for event in waits:
                stream.wait_event(event)
            if host is not None:
                device.get(stream=stream, out=host, blocking=block)
                out = host
            else:
                out = device.get(stream=stream)
            event = cp.cuda.Event(disable_timing=True)
            event.record(stream)
        self.transfer_event = event
        return out

    def run_once(self, inputs, output=None):
        """
        Write `inputs`, run, and return a device copy of one output.

        Parameters
        ----------
        inputs : dict
            Maps input roles to host or device arrays.
        output : Memory member, optional
            Role to return; defaults to the stage's first output.

        Returns
        -------
        out : cupy.ndarray
            Copy of the output buffer, complete when this returns.
        """
        self._check_configured()
        stream = self.context.stream
        for role, data in inputs.items():
            self.write(role, data)
        done = self.run()
        output = self._outputs[0] if output is None else self._role(output)
        with self.context.device:
            stream.wait_event(done)
            with stream:
                out = self.get(output).copy()
            stream.synchronize()
        return out

    def __repr__(self):
        if self._configured:
            shape = f"{self.width}x{self.height}"
        else:
            shape = "unconfigured"
        return f"{type(self).__name__}({self.name!r}, {shape})"
