#!/usr/bin/env python3
"""
Tests for the rate-limited wrappers: throttle() and queue().

Time is driven by the ManualScheduler ``clock`` fixture, so every assertion
about *when* the wrapped function ran is exact.
"""

import gc
import threading
import time

import pytest

from funkit import ExecutionFailure, InvalidArgumentError, QueueFullError, ThreadScheduler, queue, throttle
from funkit.core.rate_limiter import QueuedFunction, ThrottledFunction
from funkit.core.scheduler import TimerHandle
from funkit.core.state import Phase


class Recorder:
    """Callable that records the scheduler time and arguments of every run."""

    def __init__(self, clock, fail_on=()):
        self.clock = clock
        self.fail_on = set(fail_on)
        self.runs = []

    def __call__(self, *args, **kwargs):
        self.runs.append((self.clock.now(), args, kwargs))
        if args and args[0] in self.fail_on:
            raise RuntimeError(f"failed on {args[0]}")
        return len(self.runs)

    @property
    def times(self):
        return [t for t, _, _ in self.runs]

    @property
    def args(self):
        return [a for _, a, _ in self.runs]


class ReverseScheduler:
    """Holds timers until told to fire, then fires them newest first."""

    def __init__(self):
        self.time = 0.0
        self.timers = []

    def now(self):
        return self.time

    def call_later(self, delay_ms, callback):
        handle = TimerHandle(self.time + delay_ms)
        self.timers.append((handle, callback))
        return handle

    def fire_all(self, at):
        self.time = at
        timers, self.timers = self.timers, []
        for handle, callback in reversed(timers):
            if handle._claim():
                callback()


class TestThrottle:
    """Test the throttle() state machine."""

    def test_first_call_executes_immediately(self, clock):
        rec = Recorder(clock)
        wrapped = throttle(rec, 100)
        assert isinstance(wrapped, ThrottledFunction)
        assert wrapped("a") == 1
        assert rec.times == [0]

    def test_call_inside_window_becomes_single_trailing_call(self, clock):
        rec = Recorder(clock)
        wrapped = throttle(rec, 100)

        wrapped("t0")
        clock.advance_to(50)
        assert wrapped("t50") == 1  # stale result, not executed yet
        clock.advance_to(120)

        assert rec.times == [0, 100]
        assert rec.args == [("t0",), ("t50",)]
        assert wrapped.last_result == 2

    def test_calls_after_slot_claimed_are_absorbed(self, clock):
        rec = Recorder(clock)
        wrapped = throttle(rec, 100)

        wrapped(0)
        clock.advance_to(30)
        wrapped(30)
        clock.advance_to(60)
        assert wrapped(60) == 1
        clock.advance_to(90)
        wrapped(90)
        clock.advance_to(250)

        assert rec.times == [0, 100]
        assert rec.args == [(0,), (30,)]
        assert wrapped.snapshot().absorbed == 2

    def test_trailing_run_opens_fresh_window(self, clock):
        rec = Recorder(clock)
        wrapped = throttle(rec, 100)

        wrapped("a")
        clock.advance_to(50)
        wrapped("b")
        clock.advance_to(150)  # trailing fired at 100
        wrapped("c")  # inside the window opened at 100 -> trailing at 200
        clock.advance_to(199)
        assert rec.times == [0, 100]
        clock.advance_to(200)
        assert rec.times == [0, 100, 200]

    def test_call_after_window_runs_immediately(self, clock):
        rec = Recorder(clock)
        wrapped = throttle(rec, 100)
        wrapped()
        clock.advance_to(100)
        assert wrapped() == 2
        clock.advance_to(500)
        assert wrapped() == 3
        assert rec.times == [0, 100, 500]

    def test_phases(self, clock):
        wrapped = throttle(Recorder(clock), 100)
        assert wrapped.snapshot().phase == Phase.IDLE
        wrapped()
        assert wrapped.snapshot().phase == Phase.EXECUTED
        clock.advance_to(10)
        wrapped()
        snap = wrapped.snapshot()
        assert snap.phase == Phase.SCHEDULED
        assert snap.pending == 1
        clock.advance_to(100)
        assert wrapped.snapshot().phase == Phase.EXECUTED
        clock.advance_to(200)
        assert wrapped.snapshot().phase == Phase.IDLE

    def test_immediate_failure_propagates_and_state_advances(self, clock):
        rec = Recorder(clock, fail_on={"bad"})
        wrapped = throttle(rec, 100)
        with pytest.raises(RuntimeError, match="failed on bad"):
            wrapped("bad")
        clock.advance_to(20)
        wrapped("good")  # window still open: becomes trailing
        clock.advance_to(100)
        assert rec.args == [("bad",), ("good",)]
        assert wrapped.last_result == 2

    def test_trailing_failure_goes_to_on_error(self, clock):
        failures = []
        rec = Recorder(clock, fail_on={"bad"})
        wrapped = throttle(rec, 100, on_error=failures.append)

        wrapped("ok")
        clock.advance_to(10)
        wrapped("bad")
        clock.advance_to(100)

        assert len(failures) == 1
        failure = failures[0]
        assert isinstance(failure, ExecutionFailure)
        assert isinstance(failure.__cause__, RuntimeError)
        assert failure.report.error_type == "RuntimeError"
        assert failure.report.scheduled_for == 100
        assert failure.to_dict()["code"] == "EXECUTION_FAILURE"

        # Bookkeeping still advanced: the slot cleared, the window restarted at 100.
        snap = wrapped.snapshot()
        assert snap.pending == 0
        assert snap.last_fired_at == 100
        assert snap.executions == 2
        assert wrapped.last_result == 1
        clock.advance_to(150)
        wrapped("later")
        clock.advance_to(200)
        assert rec.times == [0, 100, 200]

    def test_trailing_failure_logged_by_default(self, clock, log_records):
        rec = Recorder(clock, fail_on={"bad"})
        wrapped = throttle(rec, 100)
        wrapped("ok")
        wrapped("bad")
        clock.advance_to(100)
        errors = [r for r in log_records if r["level"].name == "ERROR"]
        assert len(errors) == 1
        assert "failed on bad" in errors[0]["message"]

    def test_broken_on_error_handler_does_not_escape(self, clock, log_records):
        def handler(failure):
            raise ValueError("handler bug")

        rec = Recorder(clock, fail_on={"bad"})
        wrapped = throttle(rec, 100, on_error=handler)
        wrapped("ok")
        wrapped("bad")
        clock.advance_to(100)
        assert wrapped.snapshot().pending == 0
        assert any("on_error handler" in r["message"] for r in log_records)

    def test_cancel_drops_trailing_call(self, clock):
        rec = Recorder(clock)
        wrapped = throttle(rec, 100)
        wrapped("a")
        clock.advance_to(10)
        wrapped("b")
        assert wrapped.cancel() == 1
        assert wrapped.cancel() == 0
        clock.advance_to(300)
        assert rec.args == [("a",)]

    def test_cancel_keeps_window_open(self, clock):
        rec = Recorder(clock)
        wrapped = throttle(rec, 100)
        wrapped("a")
        clock.advance_to(10)
        wrapped("b")
        wrapped.cancel()
        clock.advance_to(20)
        wrapped("c")
        clock.advance_to(100)
        assert rec.args == [("a",), ("c",)]

    def test_garbage_collected_wrapper_never_fires(self, clock):
        rec = Recorder(clock)
        wrapped = throttle(rec, 100)
        wrapped("a")
        wrapped("b")
        assert clock.pending == 1
        del wrapped
        gc.collect()
        assert clock.pending == 0
        clock.advance_to(500)
        assert rec.args == [("a",)]

    def test_wrappers_do_not_share_state(self, clock):
        rec_a, rec_b = Recorder(clock), Recorder(clock)
        a, b = throttle(rec_a, 100), throttle(rec_b, 100)
        a()
        b()
        assert rec_a.times == [0]
        assert rec_b.times == [0]

    def test_decorator_factory_and_receiver(self, clock):
        class Widget:
            def __init__(self):
                self.renders = []

            @throttle(wait_ms=50)
            def render(self, frame):
                self.renders.append((clock.now(), frame))
                return frame

        w = Widget()
        assert w.render(1) == 1
        assert w.render(2) == 1
        clock.advance_to(50)
        assert w.renders == [(0, 1), (50, 2)]

    @pytest.mark.parametrize("wait", [-1, float("nan"), float("inf"), "100", None, True])
    def test_invalid_wait(self, clock, wait):
        with pytest.raises(InvalidArgumentError):
            throttle(lambda: None, wait)

    def test_non_callable_rejected(self, clock):
        with pytest.raises(InvalidArgumentError):
            throttle("nope", 100)
        with pytest.raises(InvalidArgumentError):
            throttle(lambda: None, 100, on_error="nope")


class TestQueue:
    """Test the queue() pacing behaviour."""

    def test_burst_is_spaced_by_full_window(self, clock):
        rec = Recorder(clock)
        wrapped = queue(rec, 100)
        assert isinstance(wrapped, QueuedFunction)

        wrapped("t0")
        clock.advance_to(10)
        wrapped("t10")
        clock.advance_to(20)
        wrapped("t20")
        clock.advance_to(1000)

        assert rec.times == [0, 100, 200]
        assert rec.args == [("t0",), ("t10",), ("t20",)]

    def test_queued_calls_return_last_completed_result(self, clock):
        rec = Recorder(clock)
        wrapped = queue(rec, 100)
        assert wrapped() == 1
        assert wrapped() == 1
        clock.advance_to(100)
        assert wrapped.last_result == 2
        assert wrapped() == 2
        clock.advance_to(200)
        assert wrapped.last_result == 3

    def test_no_call_is_dropped(self, clock):
        rec = Recorder(clock)
        wrapped = queue(rec, 10, max_pending=None)
        for n in range(50):
            wrapped(n)
        assert wrapped.snapshot().pending == 49
        clock.advance(10_000)
        assert rec.args == [(n,) for n in range(50)]
        assert rec.times == [n * 10 for n in range(50)]

    def test_idle_queue_runs_immediately_again(self, clock):
        rec = Recorder(clock)
        wrapped = queue(rec, 100)
        wrapped()
        wrapped()
        clock.advance_to(400)
        wrapped()
        assert rec.times == [0, 100, 400]

    def test_call_inside_window_after_queue_drained(self, clock):
        rec = Recorder(clock)
        wrapped = queue(rec, 100)
        wrapped()
        wrapped()
        clock.advance_to(150)  # second run started at 100
        wrapped()
        clock.advance_to(1000)
        assert rec.times == [0, 100, 200]

    def test_max_pending_cap(self, clock):
        rec = Recorder(clock)
        wrapped = queue(rec, 100, max_pending=2)
        wrapped(0)
        wrapped(1)
        wrapped(2)
        with pytest.raises(QueueFullError) as exc_info:
            wrapped(3)
        assert exc_info.value.data["max_pending"] == 2
        clock.advance_to(1000)
        assert rec.args == [(0,), (1,), (2,)]

    def test_default_cap_comes_from_settings(self, clock, monkeypatch):
        from funkit.settings import settings

        monkeypatch.setattr(settings, "QUEUE_MAX_PENDING", 7)
        assert queue(Recorder(clock), 100).max_pending == 7

    @pytest.mark.parametrize("bad", [0, -3, 2.5, False])
    def test_invalid_max_pending(self, clock, bad):
        with pytest.raises(InvalidArgumentError):
            queue(lambda: None, 100, max_pending=bad)

    def test_failure_does_not_stall_queue(self, clock):
        failures = []
        rec = Recorder(clock, fail_on={1})
        wrapped = queue(rec, 100, on_error=failures.append)
        for n in range(3):
            wrapped(n)
        clock.advance_to(300)
        assert rec.times == [0, 100, 200]
        assert len(failures) == 1
        assert failures[0].report.scheduled_for == 100
        assert wrapped.last_result == 3
        assert wrapped.snapshot().executions == 3

    def test_cancel_rewinds_to_last_started_slot(self, clock):
        rec = Recorder(clock)
        wrapped = queue(rec, 100)
        wrapped("a")
        wrapped("b")
        wrapped("c")
        clock.advance_to(100)  # "b" ran
        assert wrapped.cancel() == 1  # "c" dropped
        assert wrapped.snapshot().last_fired_at == 100
        clock.advance_to(150)
        wrapped("d")
        clock.advance_to(1000)
        assert rec.times == [0, 100, 200]
        assert rec.args == [("a",), ("b",), ("d",)]

    def test_garbage_collected_wrapper_never_fires(self, clock):
        rec = Recorder(clock)
        wrapped = queue(rec, 100)
        for n in range(4):
            wrapped(n)
        del wrapped
        gc.collect()
        clock.advance_to(1000)
        assert rec.args == [(0,)]

    def test_timers_firing_out_of_order_still_run_fifo(self):
        sched = ReverseScheduler()
        rec = Recorder(sched)
        wrapped = queue(rec, 100, scheduler=sched)
        wrapped("a")
        wrapped("b")
        wrapped("c")
        wrapped("d")
        sched.fire_all(at=300)
        assert rec.args == [("a",), ("b",), ("c",), ("d",)]
        snap = wrapped.snapshot()
        assert snap.pending == 0
        assert snap.executions == 4

    def test_stale_timer_after_cancel_does_not_run_new_call(self):
        sched = ReverseScheduler()
        rec = Recorder(sched)
        wrapped = queue(rec, 100, scheduler=sched)
        wrapped("a")
        wrapped("b")
        (_, stale_callback), = sched.timers
        wrapped.cancel()
        sched.timers.clear()
        wrapped("c")
        # The timer armed for "b" fires late, after "c" was queued.
        stale_callback()
        assert rec.args == [("a",)]
        assert wrapped.snapshot().pending == 1


class TestThreadedRateLimiting:
    """Exercise the wrappers on real threads."""

    def test_executions_never_overlap(self):
        active = []
        overlaps = []
        lock = threading.Lock()

        def work(n):
            with lock:
                active.append(n)
                if len(active) > 1:
                    overlaps.append(list(active))
            time.sleep(0.005)
            with lock:
                active.remove(n)

        wrapped = queue(work, 5, scheduler=ThreadScheduler())
        threads = [threading.Thread(target=wrapped, args=(n,)) for n in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        deadline = time.monotonic() + 5
        while wrapped.snapshot().pending and time.monotonic() < deadline:
            time.sleep(0.01)
        time.sleep(0.05)

        assert overlaps == []
        assert wrapped.snapshot().executions == 10

    def test_concurrent_throttle_claims_one_trailing_slot(self):
        runs = []
        wrapped = throttle(lambda n: runs.append(n), 200, scheduler=ThreadScheduler())
        wrapped("first")
        barrier = threading.Barrier(8)

        def worker(n):
            barrier.wait()
            wrapped(n)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        snap = wrapped.snapshot()
        assert snap.pending == 1
        assert snap.absorbed == 7
        wrapped.cancel()
        assert runs == ["first"]

    def test_short_window_burst_drains_completely(self):
        runs = []
        wrapped = queue(runs.append, 1, scheduler=ThreadScheduler(), max_pending=None)
        for n in range(200):
            wrapped(n)

        deadline = time.monotonic() + 10
        while wrapped.snapshot().executions < 200 and time.monotonic() < deadline:
            time.sleep(0.01)

        snap = wrapped.snapshot()
        assert snap.pending == 0
        assert snap.executions == 200
        assert runs == list(range(200))
