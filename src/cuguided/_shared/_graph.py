# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Dependency graph of kernel launches dispatched over several CUDA streams.

Stages describe their work as tasks that declare which device buffers they
read and write. The graph derives the ordering constraints from those
declarations (read-after-write, write-after-read and write-after-write),
assigns each task to a stream and, on submission, inserts a
``cudaStreamWaitEvent`` for every dependency that crosses streams. Buffers
are keyed by device pointer, so a buffer aliased between two stages is a
single resource.
"""

import cupy as cp


class Task:
    """One kernel launch in a `TaskGraph`."""

    __slots__ = ("name", "launch", "deps", "stream_index", "finish")

    def __init__(self, name, launch, deps):
        self.name = name
        self.launch = launch
        self.deps = deps
        self.stream_index = None
        self.finish = None

    def __repr__(self):
        return f"Task({self.name!r}, stream={self.stream_index})"


def _buffer_key(array):
    # views of one allocation share its base pointer whatever their offset
    return array.data.mem.ptr


class TaskGraph:
    """
    Acyclic graph of launches built once per configured pipeline.

    Parameters
    ----------
    context : Context
        Provides the device and the streams tasks are dispatched on.

    Notes
    -----
    Tasks can only depend on tasks added before them, so the graph is acyclic
    by construction and insertion order is a valid topological order.

    Streams are assigned by list scheduling with a unit cost per launch: each
    task goes to the stream on which it can start earliest, preferring the
    stream of its latest-finishing dependency on ties so that chains stay on
    one stream and need no events. Independent sub-graphs therefore spread
    over the streams and the pipeline latency is set by the longest
    dependency chain (see `critical_path`).
    """

    def __init__(self, context):
        self.context = context
        self.tasks = []
        self._last_writer = {}
        self._readers = {}
        self._scheduled = False
        self._done = None

    def add(self, name, launch, reads=(), writes=(), after=()):
        """
        Append a launch to the graph.

        Parameters
        ----------
        name : str
            Label used by `describe` and `critical_path`.
        launch : callable
            Called without arguments, on the task's stream, to issue the
            kernel. It should read mutable parameters at call time.
        reads, writes : sequence of cupy.ndarray
            Device buffers the launch reads and writes.
        after : sequence of Task, optional
            Extra dependencies not expressed through buffers.

        Returns
        -------
        task : Task
        """
        deps = list(after)
        for array in reads:
            writer = self._last_writer.get(_buffer_key(array))
            if writer is not None:
                deps.append(writer)
        for array in writes:
            key = _buffer_key(array)
            writer = self._last_writer.get(key)
            if writer is not None:
                deps.append(writer)
            deps.extend(self._readers.get(key, ()))

        unique = []
        for dep in deps:
            if dep not in unique:
                unique.append(dep)
        task = Task(name, launch, tuple(unique))
        self.tasks.append(task)

        for array in reads:
            self._readers.setdefault(_buffer_key(array), []).append(task)
        for array in writes:
            key = _buffer_key(array)
            self._last_writer[key] = task
            self._readers[key] = []
        self._scheduled = False
        return task

    def _assign_streams(self):
        n_streams = len(self.context.streams)
        stream_free = [0] * n_streams
        for task in self.tasks:
            ready = max((dep.finish for dep in task.deps), default=0)
            if task.deps:
                latest = max(task.deps, key=lambda dep: dep.finish)
                preferred = latest.stream_index
            else:
                preferred = 0

            def start(i):
                return max(stream_free[i], ready)

            best = min(
                range(n_streams), key=lambda i: (start(i), i != preferred, i)
            )
            task.stream_index = best
            task.finish = start(best) + 1
            stream_free[best] = task.finish
        self._scheduled = True

    def sinks(self):
        """Tasks no other task depends on."""
        used = {dep for task in self.tasks for dep in task.deps}
        return [task for task in self.tasks if task not in used]

    def critical_path(self):
        """Names of the tasks on the longest dependency chain."""
        if not self.tasks:
            return []
        length = {}
        previous = {}
        for task in self.tasks:
            best = max(task.deps, key=length.get, default=None)
            length[task] = 1 + (length[best] if best is not None else 0)
            previous[task] = best
        task = max(self.tasks, key=length.get)
        path = []
        while task is not None:
            path.append(task.name)
            task = previous[task]
        return path[::-1]

    def describe(self):
        """One line per task: stream, name and dependencies."""
        if not self._scheduled:
            self._assign_streams()
        lines = []
        for task in self.tasks:
            deps = ", ".join(dep.name for dep in task.deps) or "-"
            lines.append(f"[stream {task.stream_index}] {task.name} <- {deps}")
        return "\n".join(lines)

    def submit(self, wait_for=()):
        """
        Issue every task of the graph.

        Parameters
        ----------
        wait_for : sequence of cupy.cuda.Event, optional
            Events every stream used by the graph waits on before the first
            launch.

        Returns
        -------
        done : cupy.cuda.Event
            Recorded on the primary stream once every task has completed.
            Successive submissions of the same graph are serialized on it.
        """
        if not self._scheduled:
            self._assign_streams()
        streams = self.context.streams
        upstream = [event for event in wait_for if event is not None]
        if self._done is not None:
            upstream.append(self._done)

        with self.context.device:
            used = sorted({task.stream_index for task in self.tasks} | {0})
            for index in used:
                for event in upstream:
                    streams[index].wait_event(event)

            events = {}
            for task in self.tasks:
                stream = streams[task.stream_index]
                for dep in task.deps:
                    if dep.stream_index != task.stream_index:
                        stream.wait_event(events[dep])
                with stream:
                    task.launch()
                event = cp.cuda.Event(disable_timing=True)
                event.record(stream)
                events[task] = event

            main = streams[0]
            for task in self.sinks():
                if task.stream_index != 0:
                    main.wait_event(events[task])
            done = cp.cuda.Event(disable_timing=True)
            done.record(main)
        self._done = done
        return done
