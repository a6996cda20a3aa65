import asyncio

import pytest

from portal.services.exam_countdown import ExamCountdown, tick_delay


def test_countdown_ticks_down_and_expires_once():
    async def _run():
        ticks: list[int] = []
        expired: list[int] = []

        async def _on_expire():
            expired.append(1)

        countdown = ExamCountdown(3, _on_expire, tick_seconds=0.001, on_tick=ticks.append)
        countdown.arm()
        await countdown.wait()

        assert ticks == [2, 1, 0]
        assert expired == [1]
        assert countdown.expired
        assert countdown.remaining == 0

    asyncio.run(_run())


def test_disarm_stops_countdown_before_expiry():
    async def _run():
        expired: list[int] = []

        async def _on_expire():
            expired.append(1)

        countdown = ExamCountdown(1000, _on_expire, tick_seconds=0.001)
        countdown.arm()
        await asyncio.sleep(0.01)

        assert countdown.disarm() is True
        await countdown.wait()
        left = countdown.remaining
        await asyncio.sleep(0.01)

        assert expired == []
        assert not countdown.expired
        assert countdown.remaining == left
        assert 0 < left < 1000
        assert countdown.disarm() is False

    asyncio.run(_run())


def test_disarm_from_expiry_callback_does_not_cancel_it():
    async def _run():
        done: list[str] = []
        countdown: ExamCountdown | None = None

        async def _on_expire():
            countdown.disarm()
            await asyncio.sleep(0)
            done.append("graded")

        countdown = ExamCountdown(1, _on_expire, tick_seconds=0.001)
        countdown.arm()
        await countdown.wait()

        assert done == ["graded"]
        assert countdown.disarmed

    asyncio.run(_run())


def test_countdown_can_only_be_armed_once():
    async def _run():
        async def _on_expire():
            return None

        countdown = ExamCountdown(10, _on_expire, tick_seconds=60)
        countdown.arm()
        with pytest.raises(RuntimeError):
            countdown.arm()
        countdown.disarm()

    asyncio.run(_run())


def test_countdown_requires_positive_duration():
    async def _on_expire():
        return None

    with pytest.raises(ValueError):
        ExamCountdown(0, _on_expire)


def test_tick_delay_is_pinned_to_origin():
    assert tick_delay(100.0, 1, 1.0, 100.0) == 1.0
    assert tick_delay(100.0, 3, 1.0, 102.25) == 0.75
    # A stalled loop catches up instead of pushing every later tick back.
    assert tick_delay(100.0, 2, 1.0, 104.0) == 0.0
