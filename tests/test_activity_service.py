import asyncio
import json
from unittest.mock import MagicMock

from chronos.logger import StructuredLogger
from chronos.models.enums import AuthEvent, ErrorKind
from chronos.services.activity_service import ActivityService
from chronos.services.profile_resolver import ProfileResolver
from chronos.services.session_controller import SessionController
from fakes import failure, make_session, settle


def _services(idp, logger):
    session = SessionController(
        idp=idp, profile_resolver=ProfileResolver(idp=idp, logger=logger), logger=logger,
    )
    return session, ActivityService(idp=idp, session=session, logger=logger, min_duration_ms=1000)


async def _signed_in(session):
    session.initialize()
    await settle()
    await session.handle_auth_event(AuthEvent.SIGNED_IN, make_session("u1", "jane@x.com"))


def test_usage_is_recorded_for_signed_in_user(idp, logger):
    session, activity = _services(idp, logger)

    async def scenario():
        await _signed_in(session)
        log = await activity.record_usage("pomodoro", 1500000, category="Deep Work")
        session.teardown()
        return log

    log = asyncio.run(scenario())
    assert log is not None
    (row,) = idp.calls_to("insert_activity")[0]
    assert row["user_id"] == "u1"
    assert row["timer_type"] == "pomodoro"
    assert row["duration_ms"] == 1500000
    assert row["category"] == "Deep Work"


def test_metadata_is_encoded_into_category(idp, logger):
    session, activity = _services(idp, logger)

    async def scenario():
        await _signed_in(session)
        await activity.record_usage("stopwatch", 5000, metadata={"laps": 3})
        session.teardown()

    asyncio.run(scenario())
    (row,) = idp.calls_to("insert_activity")[0]
    category, payload = row["category"].split("|META:")
    assert category == "General"
    assert json.loads(payload) == {"laps": 3}


def test_skipped_without_signed_in_user(idp):
    logger = MagicMock(spec=StructuredLogger)
    session, activity = _services(idp, logger)

    result = asyncio.run(activity.record_usage("pomodoro", 60000))

    assert result is None
    assert idp.calls_to("insert_activity") == []
    logger.warning.assert_called_once()


def test_short_sessions_are_skipped(idp, logger):
    session, activity = _services(idp, logger)

    async def scenario():
        await _signed_in(session)
        results = [
            await activity.record_usage("pomodoro", 1000),
            await activity.record_usage("pomodoro", 200),
        ]
        session.teardown()
        return results

    assert asyncio.run(scenario()) == [None, None]
    assert idp.calls_to("insert_activity") == []


def test_insert_failure_is_logged_not_raised(idp):
    logger = MagicMock(spec=StructuredLogger)
    idp.results["insert_activity"] = failure("permission denied for table timer_logs", ErrorKind.AUTH)
    session, activity = _services(idp, logger)

    async def scenario():
        await _signed_in(session)
        result = await activity.record_usage("pomodoro", 60000)
        session.teardown()
        return result

    assert asyncio.run(scenario()) is None
    assert logger.error.called
