import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from chronos.models.auth_models import IdPResult, SignUpData, SignUpUser
from chronos.models.enums import AuthEvent, AuthView, CooldownReason, ErrorKind, Severity
from chronos.services.auth_flow import AuthFlowController, InvalidTransitionError
from chronos.services.cooldown import Cooldown
from chronos.services.profile_resolver import ProfileResolver
from chronos.services.session_controller import SessionController
from fakes import ManualClock, failure, make_session, settle


def _flow(idp, logger, clock=None):
    clock = clock or ManualClock()
    return AuthFlowController(
        idp=idp,
        logger=logger,
        redirect_url="http://localhost:3000/",
        cooldown=Cooldown(sleep=clock.sleep),
    )


def _fill(flow, email="jane@x.com", password="secret1", full_name=""):
    flow.email = email
    flow.password = password
    flow.full_name = full_name


def test_login_success_closes_flow(idp, logger):
    flow = _flow(idp, logger)
    flow.open(AuthView.LOGIN)
    _fill(flow, email="  Jane@X.com ")

    asyncio.run(flow.submit())

    assert idp.calls_to("sign_in_with_password") == [("jane@x.com", "secret1")]
    assert flow.is_open is False
    assert flow.display_state == "closed"
    assert flow.email == ""
    assert flow.password == ""


def test_login_failure_keeps_view_and_sets_error(idp, logger):
    idp.results["sign_in_with_password"] = failure("Invalid login credentials", status=400)
    flow = _flow(idp, logger)
    flow.open()
    _fill(flow)

    asyncio.run(flow.submit())

    assert flow.is_open
    assert flow.view == AuthView.LOGIN
    assert flow.error.title == "Access Denied"
    assert flow.loading is False


def test_adapter_exception_is_classified(idp, logger):
    idp.sign_in_with_password = AsyncMock(side_effect=httpx.ConnectError("refused"))
    flow = _flow(idp, logger)
    flow.open()
    _fill(flow)

    asyncio.run(flow.submit())

    assert flow.error.title == "Connection Blocked"
    assert flow.loading is False


def test_invalid_email_is_rejected_without_network(idp, logger):
    flow = _flow(idp, logger)
    flow.open()
    _fill(flow, email="not-an-email")

    asyncio.run(flow.submit())

    assert flow.error.title == "Invalid Input"
    assert flow.error.severity == Severity.ERROR
    assert idp.calls == []


def test_short_password_is_rejected(idp, logger):
    flow = _flow(idp, logger)
    flow.open()
    _fill(flow, password="12345")

    asyncio.run(flow.submit())

    assert "at least 6" in flow.error.message
    assert idp.calls == []


def test_five_digit_code_is_rejected_locally(idp, logger):
    flow = _flow(idp, logger)
    flow.open(AuthView.VERIFY_CODE)
    flow.email = "jane@x.com"
    flow.otp = "12345"

    asyncio.run(flow.submit())

    assert flow.error.title == "Invalid Input"
    assert flow.view == AuthView.VERIFY_CODE
    assert idp.calls_to("verify_recovery_code") == []


def test_otp_keeps_digits_only(idp, logger):
    flow = _flow(idp, logger)
    flow.otp = "12a34-5678"
    assert flow.otp == "123456"


def test_signup_for_existing_account_warns(idp, logger):
    idp.results["sign_up"] = IdPResult(
        data=SignUpData(user=SignUpUser(id="u1", email="jane@x.com", identities=[])),
    )
    flow = _flow(idp, logger)
    flow.open()
    flow.toggle_register()
    _fill(flow, full_name="Jane Doe")

    asyncio.run(flow.submit())

    assert flow.error.severity == Severity.WARNING
    assert flow.error.title == "Account Exists"
    assert flow.succeeded is False
    assert flow.view == AuthView.SIGNUP


def test_signup_without_session_needs_confirmation(idp, logger):
    idp.results["sign_up"] = IdPResult(
        data=SignUpData(user=SignUpUser(id="u1", email="jane@x.com", identities=[{"id": "x"}])),
    )
    flow = _flow(idp, logger)
    flow.open(AuthView.SIGNUP)
    _fill(flow, full_name="  Jane Doe ")

    asyncio.run(flow.submit())

    assert idp.calls_to("sign_up") == [
        ("jane@x.com", "secret1", {"full_name": "Jane Doe"}, "http://localhost:3000"),
    ]
    assert flow.display_state == "success"
    assert flow.needs_email_confirmation is True
    assert flow.success_title == "Account Created"
    assert "Check your email" in flow.success_message


def test_signup_requires_full_name(idp, logger):
    flow = _flow(idp, logger)
    flow.open(AuthView.SIGNUP)
    _fill(flow, full_name="J")

    asyncio.run(flow.submit())

    assert "Full name" in flow.error.message
    assert idp.calls == []


def test_password_recovery_flow(idp, logger):
    clock = ManualClock()

    async def scenario():
        flow = _flow(idp, logger, clock)
        flow.open()
        flow.show_forgot_password()
        flow.email = "jane@x.com"

        await flow.submit()
        assert flow.view == AuthView.VERIFY_CODE
        assert flow.cooldown == 60
        assert flow.can_submit is True
        assert flow.can_resend is False
        assert flow.resend_code() is False

        flow.otp = "123456"
        await flow.submit()
        assert flow.view == AuthView.RESET_PASSWORD
        assert idp.calls_to("verify_recovery_code") == [("jane@x.com", "123456")]

        flow.password = "newpass1"
        await flow.submit()
        assert flow.succeeded
        assert flow.success_title == "Session Updated"
        assert idp.calls_to("update_password") == [("newpass1",)]
        flow.close()

    asyncio.run(scenario())
    assert idp.calls_to("request_password_reset") == [("jane@x.com", "http://localhost:3000")]


def test_resend_allowed_after_cooldown(idp, logger):
    clock = ManualClock()

    async def scenario():
        flow = _flow(idp, logger, clock)
        flow.open(AuthView.FORGOT_PASSWORD)
        flow.email = "jane@x.com"
        await flow.submit()
        await clock.advance(60)
        assert flow.cooldown == 0
        assert flow.can_resend is True
        assert flow.resend_code() is True
        assert flow.view == AuthView.FORGOT_PASSWORD

    asyncio.run(scenario())


def test_rate_limit_starts_cooldown_and_blocks_submit(idp, logger):
    idp.results["sign_in_with_password"] = failure(
        "Too many requests", ErrorKind.RATE_LIMIT, status=429,
    )
    clock = ManualClock()

    async def scenario():
        flow = _flow(idp, logger, clock)
        flow.open()
        _fill(flow)

        await flow.submit()
        assert flow.error.severity == Severity.RATE_LIMIT
        assert flow.cooldown == 60
        assert flow.can_submit is False

        await clock.advance()
        assert flow.cooldown == 59

        await flow.submit()
        assert flow.error.title == "Rate Limit"
        assert len(idp.calls_to("sign_in_with_password")) == 1

        await clock.advance(59)
        assert flow.cooldown == 0
        assert flow.can_submit is True

    asyncio.run(scenario())
    assert set(clock.intervals) == {1.0}


def test_recovery_event_overrides_pending_login(idp, logger):
    async def scenario():
        session = SessionController(
            idp=idp, profile_resolver=ProfileResolver(idp=idp, logger=logger), logger=logger,
        )
        flow = _flow(idp, logger)
        flow.attach(session)
        session.initialize()
        await settle()

        flow.open()
        _fill(flow)
        pending = idp.hold("sign_in_with_password")
        submit = asyncio.ensure_future(flow.submit())
        await settle()
        assert flow.loading

        await session.handle_auth_event(
            AuthEvent.PASSWORD_RECOVERY, make_session("u1", "jane@x.com"),
        )
        assert flow.view == AuthView.RESET_PASSWORD
        assert flow.loading is False

        pending.set_result(IdPResult())
        await submit
        assert flow.is_open
        assert flow.view == AuthView.RESET_PASSWORD
        session.teardown()

    asyncio.run(scenario())


def test_recovery_event_opens_closed_flow(idp, logger):
    flow = _flow(idp, logger)
    flow.force_reset_password()
    assert flow.is_open
    assert flow.display_state == "resetPassword"


def test_reentrant_submit_is_ignored(idp, logger):
    async def scenario():
        flow = _flow(idp, logger)
        flow.open()
        _fill(flow)
        pending = idp.hold("sign_in_with_password")
        first = asyncio.ensure_future(flow.submit())
        await settle()
        await flow.submit()
        pending.set_result(IdPResult())
        await first

    asyncio.run(scenario())
    assert len(idp.calls_to("sign_in_with_password")) == 1


def test_back_clears_error_and_code(idp, logger):
    flow = _flow(idp, logger)
    flow.open(AuthView.VERIFY_CODE)
    flow.email = "jane@x.com"
    flow.otp = "123"
    asyncio.run(flow.submit())
    assert flow.error is not None

    flow.back()

    assert flow.view == AuthView.LOGIN
    assert flow.error is None
    assert flow.otp == ""


def test_register_toggles_between_login_and_signup(idp, logger):
    flow = _flow(idp, logger)
    flow.open()
    flow.toggle_register()
    assert flow.view == AuthView.SIGNUP
    flow.toggle_register()
    assert flow.view == AuthView.LOGIN


def test_undeclared_transitions_raise(idp, logger):
    flow = _flow(idp, logger)

    with pytest.raises(InvalidTransitionError):
        asyncio.run(flow.submit())

    flow.open()
    with pytest.raises(InvalidTransitionError):
        flow.back()
    with pytest.raises(InvalidTransitionError):
        flow.resend_code()

    flow.show_forgot_password()
    with pytest.raises(InvalidTransitionError):
        flow.toggle_register()


def test_submit_from_success_is_invalid(idp, logger):
    idp.results["sign_up"] = IdPResult(data=SignUpData())
    flow = _flow(idp, logger)
    flow.open(AuthView.SIGNUP)
    _fill(flow, full_name="Jane Doe")
    asyncio.run(flow.submit())
    assert flow.succeeded

    with pytest.raises(InvalidTransitionError):
        asyncio.run(flow.submit())
    with pytest.raises(InvalidTransitionError):
        flow.back()


def test_close_resets_cooldown_and_fields(idp, logger):
    async def scenario():
        flow = _flow(idp, logger)
        flow.open(AuthView.FORGOT_PASSWORD)
        flow.email = "jane@x.com"
        await flow.submit()
        assert flow.cooldown == 60
        flow.close()
        assert flow.cooldown == 0
        assert flow.view == AuthView.LOGIN
        assert flow.email == ""
        assert flow._cooldown.reason is None

    asyncio.run(scenario())


def test_cooldown_reason_tracks_code_dispatch(idp, logger):
    async def scenario():
        flow = _flow(idp, logger)
        flow.open(AuthView.FORGOT_PASSWORD)
        flow.email = "jane@x.com"
        await flow.submit()
        assert flow._cooldown.reason == CooldownReason.CODE_SENT
        flow.close()

    asyncio.run(scenario())


def test_cooldown_restart_waits_a_full_interval():
    async def scenario():
        cooldown = Cooldown(interval_s=0.5)
        cooldown.start(60, CooldownReason.CODE_SENT)
        await asyncio.sleep(0.4)
        cooldown.start(60, CooldownReason.RATE_LIMIT)
        await asyncio.sleep(0.2)
        assert cooldown.remaining == 60
        assert cooldown.blocks_submit
        await asyncio.sleep(0.4)
        assert cooldown.remaining == 59
        cooldown.cancel()

    asyncio.run(scenario())


def test_resend_from_wrong_view_raises_even_while_cooling_down(idp, logger):
    async def scenario():
        flow = _flow(idp, logger)
        flow.open(AuthView.FORGOT_PASSWORD)
        flow.email = "jane@x.com"
        await flow.submit()
        flow.back()
        assert flow.cooldown == 60
        with pytest.raises(InvalidTransitionError):
            flow.resend_code()
        flow.close()

    asyncio.run(scenario())


def test_recovery_clears_pending_email_confirmation(idp, logger):
    idp.results["sign_up"] = IdPResult(data=SignUpData())
    flow = _flow(idp, logger)
    flow.open(AuthView.SIGNUP)
    _fill(flow, full_name="Jane Doe")
    asyncio.run(flow.submit())
    assert flow.needs_email_confirmation

    flow.force_reset_password()

    assert flow.needs_email_confirmation is False
    assert flow.display_state == "resetPassword"
