# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import cupy as cp
import pytest

from cuguided._shared._context import Context
from cuguided._shared._graph import TaskGraph


@pytest.fixture(scope="module")
def context():
    return Context()


def _noop():
    pass


@pytest.fixture
def buffers():
    return [cp.empty(16, dtype=cp.float32) for _ in range(6)]


class TestHazards:
    """Ordering constraints derived from declared reads and writes."""

    def test_read_after_write(self, context, buffers):
        x, y, _, _, _, _ = buffers
        graph = TaskGraph(context)
        producer = graph.add("producer", _noop, writes=(x,))
        consumer = graph.add("consumer", _noop, reads=(x,), writes=(y,))
        assert consumer.deps == (producer,)

    def test_write_after_read(self, context, buffers):
        x, y, z, _, _, _ = buffers
        graph = TaskGraph(context)
        reader = graph.add("reader", _noop, reads=(x,), writes=(y,))
        writer = graph.add("writer", _noop, writes=(x,))
        assert writer.deps == (reader,)
        # a later reader depends on the new writer only
        late = graph.add("late", _noop, reads=(x,), writes=(z,))
        assert late.deps == (writer,)

    def test_write_after_write(self, context, buffers):
        x = buffers[0]
        graph = TaskGraph(context)
        first = graph.add("first", _noop, writes=(x,))
        second = graph.add("second", _noop, writes=(x,))
        assert second.deps == (first,)

    def test_independent_tasks(self, context, buffers):
        x, y, z, w, _, _ = buffers
        graph = TaskGraph(context)
        a = graph.add("a", _noop, reads=(x,), writes=(y,))
        b = graph.add("b", _noop, reads=(x,), writes=(z,))
        c = graph.add("c", _noop, reads=(y, z), writes=(w,))
        assert a.deps == ()
        assert b.deps == ()
        assert set(c.deps) == {a, b}

    def test_dependencies_are_unique(self, context, buffers):
        x, y, _, _, _, _ = buffers
        graph = TaskGraph(context)
        a = graph.add("a", _noop, writes=(x, y))
        b = graph.add("b", _noop, reads=(x, y), writes=(x,))
        assert b.deps == (a,)

    def test_explicit_dependency(self, context, buffers):
        x, y, _, _, _, _ = buffers
        graph = TaskGraph(context)
        a = graph.add("a", _noop, writes=(x,))
        b = graph.add("b", _noop, writes=(y,), after=(a,))
        assert b.deps == (a,)

    def test_aliased_views_share_a_key(self, context):
        x = cp.empty((4, 4), dtype=cp.float32)
        graph = TaskGraph(context)
        a = graph.add("a", _noop, writes=(x,))
        b = graph.add("b", _noop, reads=(x.reshape(16),))
        assert b.deps == (a,)

    def test_offset_views_conflict(self, context):
        x = cp.empty(64, dtype=cp.float32)
        head, tail = x[:40], x[24:]
        assert head.data.ptr != tail.data.ptr
        graph = TaskGraph(context)
        a = graph.add("a", _noop, writes=(head,))
        b = graph.add("b", _noop, reads=(tail,))
        assert b.deps == (a,)


class TestScheduling:
    def _diamond(self, context, buffers):
        x, y, z, w, v, _ = buffers
        graph = TaskGraph(context)
        graph.add("source", _noop, writes=(x,))
        graph.add("left_1", _noop, reads=(x,), writes=(y,))
        graph.add("left_2", _noop, reads=(y,), writes=(y,))
        graph.add("right", _noop, reads=(x,), writes=(z,))
        graph.add("join", _noop, reads=(y, z), writes=(w,))
        graph.add("tail", _noop, reads=(w,), writes=(v,))
        return graph

    def test_independent_branches_use_both_streams(self, context, buffers):
        graph = self._diamond(context, buffers)
        graph._assign_streams()
        streams = {task.name: task.stream_index for task in graph.tasks}
        assert streams["left_1"] != streams["right"]
        assert streams["left_1"] == streams["left_2"]
        assert streams["join"] == streams["tail"]

    def test_chain_stays_on_one_stream(self, context, buffers):
        x, y, z, _, _, _ = buffers
        graph = TaskGraph(context)
        graph.add("a", _noop, writes=(x,))
        graph.add("b", _noop, reads=(x,), writes=(y,))
        graph.add("c", _noop, reads=(y,), writes=(z,))
        graph._assign_streams()
        assert {task.stream_index for task in graph.tasks} == {0}

    def test_critical_path(self, context, buffers):
        graph = self._diamond(context, buffers)
        assert graph.critical_path() == [
            "source",
            "left_1",
            "left_2",
            "join",
            "tail",
        ]

    def test_critical_path_empty(self, context):
        assert TaskGraph(context).critical_path() == []

    def test_sinks(self, context, buffers):
        graph = self._diamond(context, buffers)
        assert [task.name for task in graph.sinks()] == ["tail"]

    def test_describe(self, context, buffers):
        graph = self._diamond(context, buffers)
        lines = graph.describe().splitlines()
        assert len(lines) == len(graph.tasks)
        assert lines[0].endswith("source <- -")
        assert "join <- left_2, right" in lines[4]

    def test_single_stream_context(self, buffers):
        graph = TaskGraph(Context(n_streams=1))
        x, y, z, _, _, _ = buffers
        graph.add("a", _noop, reads=(x,), writes=(y,))
        graph.add("b", _noop, reads=(x,), writes=(z,))
        graph._assign_streams()
        assert {task.stream_index for task in graph.tasks} == {0}


class TestSubmit:
    def test_results_follow_dependencies(self, context):
        n = 1 << 20
        x = cp.arange(n, dtype=cp.float32)
        y = cp.empty_like(x)
        z = cp.empty_like(x)
        out = cp.empty_like(x)
        cp.cuda.Device().synchronize()

        def double():
            cp.multiply(x, 2, out=y)

        def negate():
            cp.negative(x, out=z)

        def add():
            cp.add(y, z, out=out)

        graph = TaskGraph(context)
        graph.add("double", double, reads=(x,), writes=(y,))
        graph.add("negate", negate, reads=(x,), writes=(z,))
        graph.add("add", add, reads=(y, z), writes=(out,))

        done = graph.submit()
        done.synchronize()
        cp.testing.assert_array_equal(out, x)

        # a second submission reuses the schedule and waits for the first
        x += 1
        cp.cuda.Device().synchronize()
        graph.submit().synchronize()
        cp.testing.assert_array_equal(out, x)

    def test_waits_for_upstream_event(self, context):
        x = cp.zeros(1 << 20, dtype=cp.float32)
        y = cp.empty_like(x)
        upstream = cp.cuda.Stream(non_blocking=True)
        with upstream:
            x += 3
            ready = upstream.record()

        def copy():
            y[...] = x

        graph = TaskGraph(context)
        graph.add("copy", copy, reads=(x,), writes=(y,))
        graph.submit(wait_for=(ready,)).synchronize()
        cp.testing.assert_array_equal(y, cp.full_like(y, 3))
