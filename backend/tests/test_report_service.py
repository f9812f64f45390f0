from __future__ import annotations

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from stumpwatch.errors import EventNotFound, ReportConflict
from stumpwatch.event_state_service import count_reports
from stumpwatch.models.event import Event, EventHistory
from stumpwatch.models.move_hint import MoveHint
from stumpwatch.models.report import Report
from stumpwatch.report_service import submit_report

LAT, LNG = 35.6595, 139.7005


async def _status(session, event_id: int) -> str:
    return (await session.execute(select(Event.status).where(Event.id == event_id))).scalar_one()


def test_two_reporters_promote_and_resubmission_conflicts(run_db, seed_event) -> None:
    async def scenario(factory):
        async with factory() as session:
            event = await seed_event(session)

        async with factory() as session:
            first = await submit_report(session, event_id=event.id, kind="start", fingerprint="reporter-a")
            assert first.promotion.report_count == 1
            assert not first.promotion.promoted
            assert await _status(session, event.id) == "PLANNED"

        async with factory() as session:
            second = await submit_report(session, event_id=event.id, kind="start", fingerprint="reporter-b")
            assert second.promotion.report_count == 2
            assert second.promotion.to_status == "LIVE"
            assert await _status(session, event.id) == "LIVE"
            history = (await session.execute(select(EventHistory))).scalars().all()
            assert len(history) == 1
            assert "2 start reports" in history[0].reason
            assert (history[0].from_status, history[0].to_status) == ("PLANNED", "LIVE")

        async with factory() as session:
            with pytest.raises(ReportConflict) as exc_info:
                await submit_report(session, event_id=event.id, kind="start", fingerprint="reporter-a")
            assert isinstance(exc_info.value.__cause__, IntegrityError)
            assert await count_reports(session, event_id=event.id, kind="start") == 2

    run_db(scenario)


def test_third_start_report_is_a_no_op(run_db, seed_event) -> None:
    async def scenario(factory):
        async with factory() as session:
            event = await seed_event(session)
            for reporter in ("a", "b", "c"):
                outcome = await submit_report(session, event_id=event.id, kind="start", fingerprint=reporter)
            assert outcome.promotion.report_count == 3
            assert not outcome.promotion.promoted
            assert await _status(session, event.id) == "LIVE"
            history_rows = (await session.execute(select(func.count(EventHistory.id)))).scalar_one()
            assert history_rows == 1

    run_db(scenario)


def test_late_start_reports_never_pull_an_ended_event_back(run_db, seed_event) -> None:
    async def scenario(factory):
        async with factory() as session:
            event = await seed_event(session)
            await submit_report(session, event_id=event.id, kind="end", fingerprint="a")
            await submit_report(session, event_id=event.id, kind="end", fingerprint="b")
            assert await _status(session, event.id) == "ENDED"
            await submit_report(session, event_id=event.id, kind="start", fingerprint="c")
            late = await submit_report(session, event_id=event.id, kind="start", fingerprint="d")
            assert not late.promotion.promoted
            assert await _status(session, event.id) == "ENDED"

    run_db(scenario)


def test_same_reporter_may_send_different_kinds(run_db, seed_event) -> None:
    async def scenario(factory):
        async with factory() as session:
            event = await seed_event(session)
            await submit_report(session, event_id=event.id, kind="start", fingerprint="a")
            await submit_report(session, event_id=event.id, kind="check", fingerprint="a")
            await submit_report(session, event_id=event.id, kind="end", fingerprint="a")
            total = (await session.execute(select(func.count(Report.id)))).scalar_one()
            assert total == 3
            assert await _status(session, event.id) == "PLANNED"

    run_db(scenario)


def test_move_report_with_position_builds_hint(run_db, seed_event) -> None:
    async def scenario(factory):
        async with factory() as session:
            event = await seed_event(session)
            outcome = await submit_report(
                session, event_id=event.id, kind="move", fingerprint="a", lat=LAT + 0.002, lng=LNG
            )
            assert len(outcome.hints.creates) == 1
            await submit_report(session, event_id=event.id, kind="move", fingerprint="b")
            hints = (await session.execute(select(MoveHint))).scalars().all()
            assert len(hints) == 1 and hints[0].count == 1
            lat, lng = (await session.execute(select(Event.lat, Event.lng).where(Event.id == event.id))).one()
            assert (lat, lng) == (LAT, LNG)

    run_db(scenario)


def test_unknown_event_is_rejected_before_storage(run_db) -> None:
    async def scenario(factory):
        async with factory() as session:
            with pytest.raises(EventNotFound):
                await submit_report(session, event_id=999, kind="start", fingerprint="a")
            assert (await session.execute(select(func.count(Report.id)))).scalar_one() == 0

    run_db(scenario)
