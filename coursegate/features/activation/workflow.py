"""
coursegate/features/activation/workflow.py

Staged activation workflow for one code + email submission.

    Idle -> ValidatingEmail -> ValidatingFormat -> CheckingUsage
         -> CheckingValidity -> Activating -> MarkingUsed -> Succeeded

Any stage may end the run in Failed(reason). Stages run strictly one after
another; the only suspensions are the configurable pacing delays between
them. Each stage signals failure by raising an AppError whose code is the
message id shown to the user.

Once Activating has granted the entitlement the run can no longer be
cancelled, and a failure while marking the code used is only logged.
"""

import asyncio
import inspect
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from coursegate.core.errors import (
    ActivationCancelledError,
    AppError,
    EmailError,
    FormatError,
    SubmissionInProgressError,
    UsageError,
    ValidityError,
    classify_unexpected_error,
)
from coursegate.core.logging import activation_scope, log_event
from coursegate.features.entitlements.service import EntitlementManager
from coursegate.features.keys.obfuscation import normalize_code, obfuscate_code
from coursegate.features.keys.validator import KeyValidator

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
KEY_LENGTH = 16
_ALNUM = re.compile(r"^[A-Za-z0-9]+$")


class WorkflowStage(str, Enum):
    IDLE = "idle"
    VALIDATING_EMAIL = "validating_email"
    VALIDATING_FORMAT = "validating_format"
    CHECKING_USAGE = "checking_usage"
    CHECKING_VALIDITY = "checking_validity"
    ACTIVATING = "activating"
    MARKING_USED = "marking_used"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


STAGE_MESSAGE_IDS = {
    WorkflowStage.VALIDATING_EMAIL: "stage_validating_email",
    WorkflowStage.VALIDATING_FORMAT: "stage_validating_format",
    WorkflowStage.CHECKING_USAGE: "stage_checking_usage",
    WorkflowStage.CHECKING_VALIDITY: "stage_checking_validity",
    WorkflowStage.ACTIVATING: "stage_activating",
    WorkflowStage.MARKING_USED: "stage_marking_used",
    WorkflowStage.SUCCEEDED: "stage_succeeded",
}

# Stages after which the entitlement may already be granted
_COMMITTED_STAGES = (WorkflowStage.MARKING_USED, WorkflowStage.SUCCEEDED)
# From Activating on, a cancel request can no longer be honoured
_UNCANCELLABLE_STAGES = (WorkflowStage.ACTIVATING, WorkflowStage.FAILED) + _COMMITTED_STAGES


@dataclass(frozen=True)
class StageDelays:
    """Pacing between stages, in milliseconds. UX only; zero disables."""
    stage_ms: int = 500
    final_ms: int = 300

    @classmethod
    def from_settings(cls, settings_obj) -> "StageDelays":
        return cls(
            stage_ms=max(0, settings_obj.ACTIVATION_STAGE_DELAY_MS),
            final_ms=max(0, settings_obj.ACTIVATION_FINAL_STAGE_DELAY_MS),
        )

    @classmethod
    def disabled(cls) -> "StageDelays":
        return cls(stage_ms=0, final_ms=0)


@dataclass(frozen=True)
class WorkflowOutcome:
    stage: WorkflowStage
    error_code: Optional[str] = None
    error: Optional[str] = None  # localized
    warnings: List[str] = field(default_factory=list)  # message ids
    warning_messages: List[str] = field(default_factory=list)
    history: List[WorkflowStage] = field(default_factory=list)
    cancelled: bool = False
    activation_id: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.stage is WorkflowStage.SUCCEEDED


@dataclass
class _Run:
    history: List[WorkflowStage] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


TransitionCallback = Callable[[WorkflowStage, str], Any]
ActivatedCallback = Callable[["WorkflowOutcome"], Any]


class ActivationWorkflow:
    """One workflow instance per activation form; one submission at a time."""

    def __init__(
        self,
        entitlements: EntitlementManager,
        validator: KeyValidator,
        *,
        delays: Optional[StageDelays] = None,
        on_transition: Optional[TransitionCallback] = None,
        on_activated: Optional[ActivatedCallback] = None,
    ):
        self.entitlements = entitlements
        self.validator = validator
        self.delays = delays or StageDelays()
        self.on_transition = on_transition
        self.on_activated = on_activated
        self.stage = WorkflowStage.IDLE
        self._lock = asyncio.Lock()
        self._cancel_requested = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    def status_message(self) -> Optional[str]:
        message_id = STAGE_MESSAGE_IDS.get(self.stage)
        return self.entitlements.localized(message_id) if message_id else None

    def cancel(self) -> bool:
        """Abandon the running submission.

        Honoured at the next stage boundary up to and including the entry
        into Activating; returns False when nothing can be cancelled any more.
        """
        if not self.in_flight or self.stage in _UNCANCELLABLE_STAGES:
            return False
        self._cancel_requested = True
        logger.info("[activation] cancellation requested", extra={"stage": self.stage.value})
        return True

    async def submit(self, code, email) -> WorkflowOutcome:
        if self.in_flight:
            error = SubmissionInProgressError()
            log_event("warning", "[activation] submission rejected, another one is running", error_code=error.code)
            return WorkflowOutcome(
                stage=WorkflowStage.FAILED,
                error_code=error.code,
                error=self.entitlements.localized(error.code),
            )

        async with self._lock:
            self._cancel_requested = False
            with activation_scope() as activation_id:
                return await self._run(code, email, activation_id)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------
    async def _run(self, code, email, activation_id: str) -> WorkflowOutcome:
        run = _Run(history=[WorkflowStage.IDLE])
        self.stage = WorkflowStage.IDLE
        log_event("info", "[activation] submission started")

        try:
            await self._enter(WorkflowStage.VALIDATING_EMAIL, run)
            email = self._check_email(email)

            await self._enter(WorkflowStage.VALIDATING_FORMAT, run)
            entered = self._check_code(code)
            digest = obfuscate_code(normalize_code(entered))

            await self._enter(WorkflowStage.CHECKING_USAGE, run)
            if self.validator.is_used(entered):
                raise UsageError()

            await self._enter(WorkflowStage.CHECKING_VALIDITY, run)
            if not self.validator.is_valid(entered):
                raise ValidityError()

            await self._enter(WorkflowStage.ACTIVATING, run)
            activation = self.entitlements.activate_premium(entered)
            if not activation.success:
                raise AppError(activation.error, code=activation.error_code or "activation_failed")
            if activation.warning_code:
                run.warnings.append(activation.warning_code)

            await self._enter(WorkflowStage.MARKING_USED, run)
            update = self.validator.mark_used(entered, email)
            if not update.ok:
                # Entitlement is already granted; bookkeeping failure stays internal
                log_event(
                    "warning",
                    "[activation] could not mark key as used",
                    stage=WorkflowStage.MARKING_USED.value,
                    error_code=update.error_code,
                    code_digest=digest,
                )
            elif update.warning_code:
                run.warnings.append(update.warning_code)

            await self._enter(WorkflowStage.SUCCEEDED, run)
        except ActivationCancelledError as exc:
            return await self._fail(run, exc, activation_id, cancelled=True)
        except AppError as exc:
            return await self._fail(run, exc, activation_id)
        except Exception as exc:
            logger.error(f"[activation] unexpected error in stage {self.stage.value}", exc_info=True)
            return await self._fail(run, AppError(str(exc), code=classify_unexpected_error(exc)), activation_id)

        outcome = WorkflowOutcome(
            stage=WorkflowStage.SUCCEEDED,
            warnings=list(run.warnings),
            warning_messages=[self.entitlements.localized(w) for w in run.warnings],
            history=list(run.history),
            activation_id=activation_id,
        )
        log_event("info", "[activation] premium activated", code_digest=digest, extra={"warnings": run.warnings})
        if self.on_activated is not None:
            await self._notify(self.on_activated, outcome)
        return outcome

    async def _enter(self, stage: WorkflowStage, run: _Run) -> None:
        self._raise_if_cancelled(stage)

        if stage is WorkflowStage.SUCCEEDED:
            await self._pause(self.delays.final_ms)
        elif stage is not WorkflowStage.VALIDATING_EMAIL:
            await self._pause(self.delays.stage_ms)

        # cancel() may have landed during the pause
        self._raise_if_cancelled(stage)

        self.stage = stage
        run.history.append(stage)
        log_event("info", f"[activation] entered {stage.value}", stage=stage.value)
        if self.on_transition is not None:
            await self._notify(self.on_transition, stage, self.status_message())

    def _raise_if_cancelled(self, stage: WorkflowStage) -> None:
        if self._cancel_requested and stage not in _COMMITTED_STAGES:
            raise ActivationCancelledError()

    async def _fail(self, run: _Run, error: AppError, activation_id: str, cancelled: bool = False) -> WorkflowOutcome:
        failed_in = self.stage
        self.stage = WorkflowStage.FAILED
        run.history.append(WorkflowStage.FAILED)
        message = self.entitlements.localized(error.code)
        log_event(
            "info" if cancelled else "warning",
            f"[activation] failed in {failed_in.value}",
            stage=failed_in.value,
            error_code=error.code,
        )
        if self.on_transition is not None:
            await self._notify(self.on_transition, WorkflowStage.FAILED, message)
        return WorkflowOutcome(
            stage=WorkflowStage.FAILED,
            error_code=error.code,
            error=message,
            warnings=list(run.warnings),
            warning_messages=[self.entitlements.localized(w) for w in run.warnings],
            history=list(run.history),
            cancelled=cancelled,
            activation_id=activation_id,
        )

    @staticmethod
    async def _pause(ms: int) -> None:
        if ms > 0:
            await asyncio.sleep(ms / 1000)

    @staticmethod
    async def _notify(callback: Callable[..., Any], *args) -> None:
        """Run a presentation callback; its failures never change the outcome."""
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.warning("[activation] callback raised", exc_info=True)

    # ------------------------------------------------------------------
    # Input checks (no storage access)
    # ------------------------------------------------------------------
    @staticmethod
    def _check_email(email) -> str:
        email = email.strip() if isinstance(email, str) else ""
        if not email:
            raise EmailError(code="email_required")
        if not EMAIL_PATTERN.match(email):
            raise EmailError()
        return email

    @staticmethod
    def _check_code(code) -> str:
        """Return the code as entered (trimmed); raise on the first broken rule."""
        entered = code.strip() if isinstance(code, str) else ""
        if not entered:
            raise FormatError(code="empty_key")
        compact = entered.replace("-", "")
        if len(compact) != KEY_LENGTH:
            raise FormatError(code="invalid_key_length")
        if not _ALNUM.match(compact):
            raise FormatError(code="invalid_key_characters")
        if not KeyValidator.validate_format(entered):
            raise FormatError()
        return entered
