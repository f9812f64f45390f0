from __future__ import annotations

from sqlalchemy import select

from stumpwatch.models.change_request import ChangeRequest
from stumpwatch.models.event import Event, EventHistory
from stumpwatch.models.report import Report
from stumpwatch.workers.auto_promotion import SYSTEM_REVIEWER, sweep_pending_report_requests


async def _request(session, *, type: str, event_id: int) -> int:
    row = ChangeRequest(type=type, event_id=event_id, payload_json={}, status="PENDING")
    session.add(row)
    await session.commit()
    return row.id


async def _reports(session, *, event_id: int, kind: str, reporters) -> None:
    for reporter in reporters:
        session.add(Report(event_id=event_id, kind=kind, reporter_hash=reporter))
    await session.commit()


async def _request_state(session, request_id: int):
    return (
        await session.execute(
            select(ChangeRequest.status, ChangeRequest.reviewed_by).where(ChangeRequest.id == request_id)
        )
    ).one()


def test_sweep_approves_requests_at_quorum_and_promotes_event(run_db, seed_event) -> None:
    async def scenario(factory):
        async with factory() as session:
            event = await seed_event(session)
            # Reports stored without the real-time check, e.g. a crash mid-request.
            await _reports(session, event_id=event.id, kind="start", reporters=["a", "b"])
            request_id = await _request(session, type="REPORT_START", event_id=event.id)

        async with factory() as session:
            result = await sweep_pending_report_requests(session)
            assert result.as_dict() == {"processed": 1, "approved": 1, "errors": 0}
            assert await _request_state(session, request_id) == ("APPROVED", SYSTEM_REVIEWER)
            status = (await session.execute(select(Event.status).where(Event.id == event.id))).scalar_one()
            assert status == "LIVE"
            reason = (await session.execute(select(EventHistory.reason))).scalar_one()
            assert reason.startswith("auto-approval")

    run_db(scenario)


def test_sweep_leaves_requests_below_quorum_pending(run_db, seed_event) -> None:
    async def scenario(factory):
        async with factory() as session:
            event = await seed_event(session)
            await _reports(session, event_id=event.id, kind="end", reporters=["a"])
            request_id = await _request(session, type="REPORT_END", event_id=event.id)
            result = await sweep_pending_report_requests(session)
            assert (result.processed, result.approved, result.errors) == (1, 0, 0)
            assert (await _request_state(session, request_id))[0] == "PENDING"

    run_db(scenario)


def test_sweep_approves_request_even_when_event_already_promoted(run_db, seed_event) -> None:
    async def scenario(factory):
        async with factory() as session:
            event = await seed_event(session, status="ENDED")
            await _reports(session, event_id=event.id, kind="start", reporters=["a", "b"])
            request_id = await _request(session, type="REPORT_START", event_id=event.id)
            result = await sweep_pending_report_requests(session)
            assert result.approved == 1
            assert (await _request_state(session, request_id))[0] == "APPROVED"
            status = (await session.execute(select(Event.status).where(Event.id == event.id))).scalar_one()
            assert status == "ENDED"

    run_db(scenario)


def test_failing_row_does_not_block_the_rest(run_db, seed_event) -> None:
    async def scenario(factory):
        async with factory() as session:
            event = await seed_event(session)
            # SQLite does not enforce the foreign key, so an orphaned log is possible here.
            await _reports(session, event_id=999, kind="start", reporters=["a", "b"])
            orphan_id = await _request(session, type="REPORT_START", event_id=999)
            await _reports(session, event_id=event.id, kind="end", reporters=["c", "d"])
            good_id = await _request(session, type="REPORT_END", event_id=event.id)

        async with factory() as session:
            result = await sweep_pending_report_requests(session)
            assert result.as_dict() == {"processed": 2, "approved": 1, "errors": 1}
            assert (await _request_state(session, orphan_id))[0] == "PENDING"
            assert (await _request_state(session, good_id))[0] == "APPROVED"

    run_db(scenario)


def test_sweep_with_custom_quorum(run_db, seed_event) -> None:
    async def scenario(factory):
        async with factory() as session:
            event = await seed_event(session)
            await _reports(session, event_id=event.id, kind="start", reporters=["a", "b"])
            await _request(session, type="REPORT_START", event_id=event.id)
            result = await sweep_pending_report_requests(session, quorum=3)
            assert result.approved == 0

    run_db(scenario)
