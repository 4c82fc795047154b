"""
Authentication Flow Controller.

State machine behind the sign-in modal: login, signup, forgot-password,
verify-code and reset-password steps, plus the terminal ``success`` display
state.  Every navigation goes through one exhaustive transition table, so
an undeclared (state, trigger) pair raises ``InvalidTransitionError``
instead of producing an accidental UI state.

The controller never writes the canonical ``User``.  Successful sign-in,
code verification and password updates make the identity provider emit
an auth event that ``SessionController`` observes.

Errors follow one policy:

- local validation failures block the provider call entirely;
- provider failures are routed through ``classify()`` and attached as the
  single active ``FlowError``; the step does not advance;
- the error is cleared on every view change and every submission attempt.
"""

from __future__ import annotations

from typing import Callable, Optional, Union

from chronos.identity_provider import IdentityProvider
from chronos.logger import StructuredLogger
from chronos.models.auth_models import FlowError, IdPResult, SignUpData, ValidationResult
from chronos.models.enums import (
    AuthView,
    CooldownReason,
    FlowTerminal,
    FlowTrigger,
    Severity,
)
from chronos.services.base_service import BaseService
from chronos.services.cooldown import Cooldown
from chronos.services.error_classifier import classify
from chronos.services.session_controller import SessionController
from chronos.utils.audit import AuditAction

Target = Union[AuthView, FlowTerminal]


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------

def _build_transitions() -> dict[tuple[AuthView, FlowTrigger], Target]:
    table: dict[tuple[AuthView, FlowTrigger], Target] = {
        (AuthView.LOGIN, FlowTrigger.SUBMIT): FlowTerminal.CLOSED,
        (AuthView.LOGIN, FlowTrigger.FORGOT_PASSWORD): AuthView.FORGOT_PASSWORD,
        (AuthView.LOGIN, FlowTrigger.REGISTER): AuthView.SIGNUP,
        (AuthView.SIGNUP, FlowTrigger.REGISTER): AuthView.LOGIN,
        (AuthView.SIGNUP, FlowTrigger.SUBMIT): FlowTerminal.SUCCESS,
        (AuthView.FORGOT_PASSWORD, FlowTrigger.SUBMIT): AuthView.VERIFY_CODE,
        (AuthView.VERIFY_CODE, FlowTrigger.SUBMIT): AuthView.RESET_PASSWORD,
        (AuthView.VERIFY_CODE, FlowTrigger.RESEND): AuthView.FORGOT_PASSWORD,
        (AuthView.RESET_PASSWORD, FlowTrigger.SUBMIT): FlowTerminal.SUCCESS,
    }
    for view in AuthView:
        table[(view, FlowTrigger.RECOVERY_REQUESTED)] = AuthView.RESET_PASSWORD
        if view != AuthView.LOGIN:
            table[(view, FlowTrigger.BACK)] = AuthView.LOGIN
    return table


TRANSITIONS: dict[tuple[AuthView, FlowTrigger], Target] = _build_transitions()


class InvalidTransitionError(RuntimeError):
    """Raised when a trigger is not allowed in the current flow state."""

    def __init__(self, state: str, trigger: FlowTrigger) -> None:
        self.state: str = state
        self.trigger: FlowTrigger = trigger
        super().__init__(f"Trigger '{trigger}' is not allowed in state '{state}'.")


class AuthFlowController(BaseService):
    """Drives the auth modal.

    Parameters
    ----------
    idp:
        Identity provider adapter.
    logger:
        Structured JSON logger.
    redirect_url:
        Where confirmation and recovery e-mails send the user back to.
    cooldown_s:
        Seconds the resend control stays disabled after a code is sent.
    min_password_length, min_full_name_length, recovery_code_length:
        Local validation limits.
    cooldown:
        Optional pre-built ``Cooldown`` (tests inject one with a fake clock).
    """

    def __init__(
        self,
        idp: IdentityProvider,
        logger: StructuredLogger,
        redirect_url: str = "",
        cooldown_s: int = 60,
        min_password_length: int = 6,
        min_full_name_length: int = 2,
        recovery_code_length: int = 6,
        cooldown: Optional[Cooldown] = None,
    ) -> None:
        super().__init__(logger)
        self._idp: IdentityProvider = idp
        self._redirect_url: str = redirect_url.rstrip("/")
        self._cooldown_s: int = cooldown_s
        self._min_password_length: int = min_password_length
        self._min_full_name_length: int = min_full_name_length
        self._recovery_code_length: int = recovery_code_length
        self._cooldown: Cooldown = cooldown or Cooldown()

        self._is_open: bool = False
        self._view: AuthView = AuthView.LOGIN
        self._succeeded: bool = False
        self._error: Optional[FlowError] = None
        self._loading: bool = False
        self._needs_email_confirmation: bool = False
        # Bumped on every navigation; in-flight submissions compare against
        # it so a forced or manual view change discards their result.
        self._step_token: int = 0

        self.email: str = ""
        self.password: str = ""
        self.full_name: str = ""
        self._otp: str = ""

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def view(self) -> AuthView:
        return self._view

    @property
    def succeeded(self) -> bool:
        return self._succeeded

    @property
    def display_state(self) -> str:
        """``"closed"``, ``"success"`` or the current view's value."""
        if not self._is_open:
            return FlowTerminal.CLOSED.value
        if self._succeeded:
            return FlowTerminal.SUCCESS.value
        return self._view.value

    @property
    def error(self) -> Optional[FlowError]:
        return self._error

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def needs_email_confirmation(self) -> bool:
        return self._needs_email_confirmation

    @property
    def cooldown(self) -> int:
        return self._cooldown.remaining

    @property
    def can_submit(self) -> bool:
        return (
            self._is_open
            and not self._succeeded
            and not self._loading
            and not self._cooldown.blocks_submit
        )

    @property
    def can_resend(self) -> bool:
        return self._is_open and self._view == AuthView.VERIFY_CODE and not self._cooldown.active

    @property
    def otp(self) -> str:
        return self._otp

    @otp.setter
    def otp(self, value: str) -> None:
        # The code input only ever holds digits.
        self._otp = "".join(ch for ch in value if ch.isdigit())[: self._recovery_code_length]

    @property
    def success_title(self) -> str:
        return "Session Updated" if self._view == AuthView.RESET_PASSWORD else "Account Created"

    @property
    def success_message(self) -> str:
        if self._view == AuthView.RESET_PASSWORD:
            return "Your new password has been set. You are now logged in."
        if self._needs_email_confirmation:
            return "Account registration started. Check your email to verify your identity."
        return "Your account is ready. You are now logged in."

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def normalize_email(email: str) -> str:
        """Normalise an email address: strip whitespace and lowercase."""
        return email.strip().lower()

    @staticmethod
    def validate_email(email: str) -> ValidationResult:
        if "@" not in email:
            return ValidationResult(
                is_valid=False,
                error_message="Please enter a valid email address.",
            )
        return ValidationResult(is_valid=True)

    def validate_password(self, password: str) -> ValidationResult:
        if len(password) < self._min_password_length:
            return ValidationResult(
                is_valid=False,
                error_message=(
                    f"Password must be at least {self._min_password_length} characters."
                ),
            )
        return ValidationResult(is_valid=True)

    def validate_full_name(self, full_name: str) -> ValidationResult:
        if len(full_name.strip()) < self._min_full_name_length:
            return ValidationResult(
                is_valid=False,
                error_message=(
                    f"Full name must be at least {self._min_full_name_length} characters."
                ),
            )
        return ValidationResult(is_valid=True)

    def validate_recovery_code(self, code: str) -> ValidationResult:
        if len(code) != self._recovery_code_length or not code.isdigit():
            return ValidationResult(
                is_valid=False,
                error_message=(
                    f"Enter the {self._recovery_code_length}-digit code sent to your email."
                ),
            )
        return ValidationResult(is_valid=True)

    def _validate_step(self, view: AuthView) -> Optional[str]:
        checks: list[ValidationResult] = []
        if view == AuthView.SIGNUP:
            checks.append(self.validate_full_name(self.full_name))
        if view != AuthView.RESET_PASSWORD:
            checks.append(self.validate_email(self.email))
        if view in (AuthView.LOGIN, AuthView.SIGNUP, AuthView.RESET_PASSWORD):
            checks.append(self.validate_password(self.password))
        if view == AuthView.VERIFY_CODE:
            checks.append(self.validate_recovery_code(self._otp))

        for check in checks:
            if not check.is_valid:
                return check.error_message
        return None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self, initial_view: AuthView = AuthView.LOGIN) -> None:
        self._is_open = True
        self._succeeded = False
        self._change_view(initial_view)

    def close(self) -> None:
        """Close the modal and discard all flow state."""
        self._is_open = False
        self._succeeded = False
        self._needs_email_confirmation = False
        self._cooldown.cancel()
        self.email = ""
        self.password = ""
        self.full_name = ""
        self._otp = ""
        self._change_view(AuthView.LOGIN)

    def attach(self, session: SessionController) -> Callable[[], None]:
        """Follow provider recovery events; returns the detach callable."""
        return session.on_recovery_requested(self.force_reset_password)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def show_forgot_password(self) -> None:
        self._navigate(FlowTrigger.FORGOT_PASSWORD)

    def toggle_register(self) -> None:
        self._navigate(FlowTrigger.REGISTER)

    def back(self) -> None:
        self._navigate(FlowTrigger.BACK)
        self._otp = ""

    def resend_code(self) -> bool:
        """Return to the forgot-password step; ``False`` while cooling down."""
        target = self._target_for(FlowTrigger.RESEND)
        if self._cooldown.active:
            return False
        self._apply(target)
        return True

    def force_reset_password(self) -> None:
        """Jump to ``resetPassword`` regardless of the current state."""
        target = self._lookup(self._view, FlowTrigger.RECOVERY_REQUESTED)
        self._is_open = True
        self._succeeded = False
        self._needs_email_confirmation = False
        self._apply(target)
        self._logger.info(
            "Auth flow forced into %s by recovery event.", target,
            extra={"event": "PASSWORD_RECOVERY"},
        )

    def _lookup(self, view: AuthView, trigger: FlowTrigger) -> Target:
        try:
            return TRANSITIONS[(view, trigger)]
        except KeyError:
            raise InvalidTransitionError(self.display_state, trigger) from None

    def _target_for(self, trigger: FlowTrigger) -> Target:
        if not self._is_open or self._succeeded:
            raise InvalidTransitionError(self.display_state, trigger)
        return self._lookup(self._view, trigger)

    def _navigate(self, trigger: FlowTrigger) -> None:
        self._apply(self._target_for(trigger))

    def _apply(self, target: Target) -> None:
        if target == FlowTerminal.CLOSED:
            self.close()
        elif target == FlowTerminal.SUCCESS:
            self._succeeded = True
            self._error = None
        else:
            self._change_view(AuthView(target))

    def _change_view(self, view: AuthView) -> None:
        self._view = view
        self._error = None
        self._loading = False
        self._step_token += 1

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(self) -> None:
        """Validate and dispatch the current step."""
        if not self._is_open or self._succeeded:
            raise InvalidTransitionError(self.display_state, FlowTrigger.SUBMIT)
        if self._loading:
            return

        view = self._view
        target = self._lookup(view, FlowTrigger.SUBMIT)
        self._error = None

        if self._cooldown.blocks_submit:
            self._error = FlowError(
                title="Rate Limit",
                message=f"Please wait {self._cooldown.remaining} seconds before trying again.",
                severity=Severity.RATE_LIMIT,
            )
            return

        problem = self._validate_step(view)
        if problem is not None:
            self._error = FlowError.validation(problem)
            self._logger.debug("Validation blocked %s: %s", view, problem)
            return

        self._loading = True
        token = self._step_token
        try:
            result = await self._dispatch(view)
        except Exception as exc:
            self._logger.error(
                "Auth step %s raised: %s", view, exc,
                exc_info=True,
                extra={"event": "AUTH_FLOW_FAILED", "view": str(view)},
            )
            result = exc
        finally:
            if token == self._step_token:
                self._loading = False

        if token != self._step_token or not self._is_open:
            self._logger.debug("Discarding %s result after navigation.", view)
            return

        if isinstance(result, IdPResult) and result.ok:
            self._on_step_succeeded(view, target, result)
        else:
            self._fail(result.error if isinstance(result, IdPResult) else result, view)

    async def _dispatch(self, view: AuthView) -> IdPResult:
        email = self.normalize_email(self.email)
        if view == AuthView.LOGIN:
            return await self._idp.sign_in_with_password(email, self.password)
        if view == AuthView.SIGNUP:
            return await self._idp.sign_up(
                email,
                self.password,
                {"full_name": self.full_name.strip()},
                self._redirect_url,
            )
        if view == AuthView.FORGOT_PASSWORD:
            return await self._idp.request_password_reset(email, self._redirect_url)
        if view == AuthView.VERIFY_CODE:
            return await self._idp.verify_recovery_code(email, self._otp)
        return await self._idp.update_password(self.password)

    def _on_step_succeeded(self, view: AuthView, target: Target, result: IdPResult) -> None:
        email = self.normalize_email(self.email)

        if view == AuthView.SIGNUP:
            data = result.data if isinstance(result.data, SignUpData) else None
            if data is not None and data.account_exists:
                self._error = FlowError(
                    title="Account Exists",
                    message="This email is already registered.",
                    severity=Severity.WARNING,
                )
                self._logger.info(
                    "Sign-up for %s matched an existing account.", email,
                    extra={"event": "SIGN_UP_EXISTS"},
                )
                return
            self._needs_email_confirmation = data is None or data.session is None
            self._audit(
                AuditAction.SIGN_UP,
                data.user.id if data is not None and data.user is not None else email,
                {"email": email, "needs_confirmation": self._needs_email_confirmation},
            )
        elif view == AuthView.FORGOT_PASSWORD:
            self._cooldown.start(self._cooldown_s, CooldownReason.CODE_SENT)
            self._audit(AuditAction.PASSWORD_RESET_REQUESTED, email)
        elif view == AuthView.VERIFY_CODE:
            self._audit(AuditAction.RECOVERY_CODE_VERIFIED, email)
        elif view == AuthView.RESET_PASSWORD:
            self.password = ""
            self._audit(AuditAction.PASSWORD_UPDATED, email)

        self._logger.info(
            "Auth step %s succeeded; moving to %s.", view, target,
            extra={"event": "AUTH_FLOW_STEP", "view": str(view)},
        )
        self._apply(target)

    def _fail(self, raw: object, view: AuthView) -> None:
        classification = classify(raw, view)
        self._error = classification.error
        if classification.cooldown_seconds:
            self._cooldown.start(classification.cooldown_seconds, CooldownReason.RATE_LIMIT)
        self._logger.warning(
            "Auth step %s failed (%s): %s",
            view,
            classification.kind,
            classification.message,
            extra={
                "event": "AUTH_FLOW_FAILED",
                "view": str(view),
                "error_kind": str(classification.kind),
            },
        )
