"""
Quiz access rules.

A QuizAccessRule has a fixed method set: is_applicable, check_access,
on_attempt_terminal and render_description. Rules are registered
explicitly in a RuleRegistry at startup.

SessionLockRule is the session-binding rule. It ships in two deployment
instances with separate tables and wording:

    oneconnection   "Block concurrent connections"
    onesession      "Block concurrent sessions"
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional

from .attempts import AttemptDirectory
from .config import RuleConfig
from .errors import UnknownAttemptError
from .events import EventDispatcher, register_activity_log, register_lifecycle_observers
from .fingerprint import RequestContext
from .gate import AccessDecision, AccessOutcome, AttemptGate, DecisionReason
from .models import Attempt, QuizSettings
from .report import AttemptReportRow, build_report
from .store import SessionStorage
from .unlock import CapabilityChecker, UnlockResult, UnlockService


@dataclass(frozen=True)
class RuleVariant:
    """Name and learner-facing wording of one deployment instance."""
    component: str
    title: str
    block_message: str
    student_info: str
    manage_label: str = "Allow connection changes"


_BLOCK_MESSAGE = (
    "You are trying to access this quiz attempt from a different device or browser "
    "than the one you started with. If you need to switch devices, please contact the invigilator."
)
_STUDENT_INFO = (
    "Attention! It is prohibited to change device while attempting this quiz. Please note that "
    "after beginning of quiz attempt any connections to this quiz using other computers, devices "
    "and browsers will be blocked. Do not close the browser window until the end of attempt, "
    "otherwise you will not be able to complete this quiz."
)

ONE_CONNECTION = RuleVariant(
    component="oneconnection",
    title="Block concurrent connections",
    block_message=_BLOCK_MESSAGE,
    student_info=_STUDENT_INFO,
)

ONE_SESSION = RuleVariant(
    component="onesession",
    title="Block concurrent sessions",
    block_message=_BLOCK_MESSAGE,
    student_info=_STUDENT_INFO,
)

VARIANTS = {v.component: v for v in (ONE_CONNECTION, ONE_SESSION)}


class QuizAccessRule(ABC):
    """Capability interface every access rule implements."""
    component: str

    @abstractmethod
    def is_applicable(self, quiz_id: int) -> bool:
        pass

    @abstractmethod
    def check_access(self, attempt: Attempt, ctx: RequestContext) -> AccessDecision:
        pass

    @abstractmethod
    def on_attempt_terminal(self, attempt_id: int) -> None:
        pass

    @abstractmethod
    def render_description(self, can_manage: bool = False) -> List[str]:
        pass


class SessionLockRule(QuizAccessRule):
    """
    Binds each attempt to the browser session that first opened it.

    Usage:
        rule = SessionLockRule(ONE_CONNECTION, storage, attempts, config)
        decision = rule.check_access(attempt, ctx)
        if decision.requires_block_flow():
            show(rule.block_message())
    """

    def __init__(
        self,
        variant: RuleVariant,
        storage: SessionStorage,
        attempts: AttemptDirectory,
        config: Optional[RuleConfig] = None,
        dispatcher: Optional[EventDispatcher] = None,
        capabilities: Optional[CapabilityChecker] = None,
        manage_url: Optional[str] = None
    ):
        self.variant = variant
        self.component = variant.component
        self.storage = storage
        self.attempts = attempts
        self.config = config or RuleConfig(component=variant.component)
        self.dispatcher = dispatcher or EventDispatcher()
        self.manage_url = manage_url
        self.gate = AttemptGate(self.component, storage, self.dispatcher, self.config.exempt_subnets)
        self.unlocks = UnlockService(self.component, storage, attempts, self.dispatcher, capabilities)

    # ------------------------------------------------------------------
    # QuizAccessRule
    # ------------------------------------------------------------------

    def is_applicable(self, quiz_id: int) -> bool:
        settings = self.storage.settings.get(quiz_id)
        if settings is None:
            return self.config.default_enabled
        return settings.enabled

    def check_access(self, attempt: Attempt, ctx: RequestContext) -> AccessDecision:
        if not self.is_applicable(attempt.quiz_id):
            return AccessDecision(AccessOutcome.PASS, attempt.attempt_id, DecisionReason.NOT_APPLICABLE)
        return self.gate.check_access(
            attempt.attempt_id,
            attempt.quiz_id,
            ctx,
            is_previewer=attempt.preview,
            user_id=attempt.user_id,
        )

    def on_attempt_terminal(self, attempt_id: int) -> None:
        if attempt_id:
            self.gate.release(attempt_id)

    def render_description(self, can_manage: bool = False) -> List[str]:
        messages = [self.variant.student_info]
        if can_manage:
            label = self.variant.manage_label
            messages.append(f"{label}: {self.manage_url}" if self.manage_url else label)
        return messages

    # ------------------------------------------------------------------
    # Attempt flow
    # ------------------------------------------------------------------

    def _attempt(self, attempt_id: int) -> Attempt:
        attempt = self.attempts.get(attempt_id)
        if attempt is None:
            raise UnknownAttemptError(attempt_id)
        return attempt

    def check_attempt(self, attempt_id: int, ctx: RequestContext) -> AccessDecision:
        """check_access by id. Raises UnknownAttemptError."""
        return self.check_access(self._attempt(attempt_id), ctx)

    def confirm(self, attempt_id: int, ctx: RequestContext) -> AccessDecision:
        """Second validation when the block screen is submitted."""
        attempt = self._attempt(attempt_id)
        if not self.is_applicable(attempt.quiz_id):
            return AccessDecision(AccessOutcome.PASS, attempt_id, DecisionReason.NOT_APPLICABLE)
        return self.gate.confirm(attempt_id, ctx, is_previewer=attempt.preview)

    def is_blocked(self, attempt_id: int, ctx: RequestContext) -> bool:
        return self.gate.is_blocked(attempt_id, ctx)

    def block_message(self) -> str:
        return self.variant.block_message

    # ------------------------------------------------------------------
    # Supervisor actions
    # ------------------------------------------------------------------

    def unlock(self, attempt_id: int, acting_user_id: int) -> UnlockResult:
        return self.unlocks.unlock(attempt_id, acting_user_id)

    def unlock_many(self, attempt_ids: Iterable[int], acting_user_id: int, quiz_id: Optional[int] = None) -> int:
        return self.unlocks.unlock_many(attempt_ids, acting_user_id, quiz_id)

    def report(self, quiz_id: int) -> List[AttemptReportRow]:
        return build_report(quiz_id, self.attempts.for_quiz(quiz_id), self.storage)

    # ------------------------------------------------------------------
    # Quiz settings
    # ------------------------------------------------------------------

    def save_settings(self, quiz_id: int, enabled: bool, can_edit: bool = True) -> bool:
        """
        Store the per-quiz switch. Disabling drops every lock of the quiz.

        Returns False (and changes nothing) when the caller may not edit it.
        """
        if not can_edit:
            return False
        with self.storage.atomic():
            self.storage.settings.save(QuizSettings(quiz_id=quiz_id, enabled=enabled))
            if not enabled:
                self.storage.locks.delete_all_for_quiz(quiz_id)
        return True

    def delete_settings(self, quiz_id: int) -> None:
        """Quiz deleted: drop settings, locks and the quiz's unlock log."""
        with self.storage.atomic():
            self.storage.settings.delete(quiz_id)
            self.storage.locks.delete_all_for_quiz(quiz_id)
            self.storage.audit.delete_for_quiz(quiz_id)


class RuleRegistry:
    """Explicit registry of access rules, keyed by component."""

    def __init__(self, dispatcher: Optional[EventDispatcher] = None):
        self.dispatcher = dispatcher or EventDispatcher()
        self._rules: Dict[str, QuizAccessRule] = {}

    def register(self, rule: QuizAccessRule) -> QuizAccessRule:
        if rule.component in self._rules:
            raise ValueError(f"rule {rule.component!r} already registered")
        self._rules[rule.component] = rule
        register_lifecycle_observers(self.dispatcher, [rule])
        return rule

    def get(self, component: str) -> QuizAccessRule:
        return self._rules[component]

    def __iter__(self) -> Iterator[QuizAccessRule]:
        return iter(self._rules.values())

    def __len__(self) -> int:
        return len(self._rules)

    def applicable_rules(self, quiz_id: int) -> List[QuizAccessRule]:
        return [r for r in self._rules.values() if r.is_applicable(quiz_id)]

    def check_all(self, attempt: Attempt, ctx: RequestContext) -> List[AccessDecision]:
        """Run every applicable rule; the attempt may continue only if all pass."""
        return [r.check_access(attempt, ctx) for r in self.applicable_rules(attempt.quiz_id)]


def build_registry(
    storages: Dict[str, SessionStorage],
    attempts: AttemptDirectory,
    configs: Optional[Dict[str, RuleConfig]] = None,
    capabilities: Optional[CapabilityChecker] = None,
    dispatcher: Optional[EventDispatcher] = None
) -> RuleRegistry:
    """
    Register one SessionLockRule per storage, by component name.

    The dispatcher also gets the activity log subscriber.
    """
    registry = RuleRegistry(dispatcher)
    register_activity_log(registry.dispatcher)
    for component, storage in storages.items():
        variant = VARIANTS[component]
        config = (configs or {}).get(component)
        registry.register(SessionLockRule(
            variant,
            storage,
            attempts,
            config=config,
            dispatcher=registry.dispatcher,
            capabilities=capabilities,
        ))
    return registry
