from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING, Callable

import pytest

from packetbot.retention.enforcer import PassReport
from packetbot.retention.scheduler import RetentionScheduler

if TYPE_CHECKING:
    from conftest import FakeChatClient


class StubEnforcer:
    def __init__(self, action: Callable[[int], None] | None = None) -> None:
        self.calls = 0
        self._action = action

    def run_pass(self) -> PassReport:
        self.calls += 1
        if self._action is not None:
            self._action(self.calls)
        return PassReport(guilds=self.calls)


def _wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_no_pass_before_ready(fake_client: FakeChatClient) -> None:
    enforcer = StubEnforcer()
    scheduler = RetentionScheduler(fake_client, enforcer, interval_s=60)  # type: ignore[arg-type]
    scheduler.start()
    time.sleep(0.05)
    assert enforcer.calls == 0
    assert not scheduler.running
    scheduler.stop()


def test_first_pass_runs_immediately_on_ready(fake_client: FakeChatClient) -> None:
    enforcer = StubEnforcer()
    scheduler = RetentionScheduler(fake_client, enforcer, interval_s=60)  # type: ignore[arg-type]
    scheduler.start()
    fake_client.fire_ready()
    try:
        assert _wait_for(lambda: enforcer.calls == 1)
        time.sleep(0.05)
        assert enforcer.calls == 1
        assert scheduler.last_report == PassReport(guilds=1)
    finally:
        scheduler.stop()
    assert not scheduler.running


def test_passes_repeat_on_interval(fake_client: FakeChatClient) -> None:
    enforcer = StubEnforcer()
    scheduler = RetentionScheduler(fake_client, enforcer, interval_s=0.02)  # type: ignore[arg-type]
    scheduler.start()
    fake_client.fire_ready()
    try:
        assert _wait_for(lambda: enforcer.calls >= 3)
    finally:
        scheduler.stop()
    assert scheduler.passes == enforcer.calls


def test_ready_fired_twice_starts_one_loop(fake_client: FakeChatClient) -> None:
    enforcer = StubEnforcer()
    scheduler = RetentionScheduler(fake_client, enforcer, interval_s=60)  # type: ignore[arg-type]
    scheduler.start()
    fake_client.fire_ready()
    fake_client.fire_ready()
    try:
        assert _wait_for(lambda: enforcer.calls == 1)
        time.sleep(0.05)
        assert enforcer.calls == 1
    finally:
        scheduler.stop()


def test_failed_pass_does_not_stop_loop(fake_client: FakeChatClient, log_messages: list[tuple[str, str]]) -> None:
    def _explode_first(call: int) -> None:
        if call == 1:
            raise RuntimeError("boom")

    enforcer = StubEnforcer(_explode_first)
    scheduler = RetentionScheduler(fake_client, enforcer, interval_s=0.02)  # type: ignore[arg-type]
    scheduler.start()
    fake_client.fire_ready()
    try:
        assert _wait_for(lambda: enforcer.calls >= 2)
    finally:
        scheduler.stop()
    assert any(level == "ERROR" and "boom" in message for level, message in log_messages)


def test_overlapping_pass_is_skipped(fake_client: FakeChatClient) -> None:
    entered = threading.Event()
    release = threading.Event()

    def _block(call: int) -> None:
        entered.set()
        release.wait(5)

    enforcer = StubEnforcer(_block)
    scheduler = RetentionScheduler(fake_client, enforcer, interval_s=60)  # type: ignore[arg-type]
    worker = threading.Thread(target=scheduler.run_pass_once)
    worker.start()
    try:
        assert entered.wait(5)
        assert scheduler.run_pass_once() is None
        assert enforcer.calls == 1
    finally:
        release.set()
        worker.join(5)
    assert scheduler.passes == 1
    assert scheduler.run_pass_once() == PassReport(guilds=2)


def test_overrunning_pass_drops_missed_ticks(fake_client: FakeChatClient) -> None:
    clock = {"now": 0.0}
    waits: list[float] = []
    enforcer = StubEnforcer(lambda call: clock.__setitem__("now", clock["now"] + 25.0))
    scheduler = RetentionScheduler(
        fake_client, enforcer, interval_s=10, monotonic=lambda: clock["now"]  # type: ignore[arg-type]
    )

    class RecordingStop(threading.Event):
        def wait(self, timeout: float | None = None) -> bool:
            waits.append(timeout or 0.0)
            if len(waits) >= 3:
                self.set()
            return self.is_set()

    scheduler._stop = RecordingStop()  # type: ignore[attr-defined]
    scheduler._run()  # type: ignore[attr-defined]

    assert enforcer.calls == 3
    assert waits == [pytest.approx(0.0)] * 3
