"""
Package eligibility: which active subscription pays for an occurrence.

Precedence for a single occurrence:
1. a subscription id embedded on the slot template;
2. the subscription the guardian selected (defaults to the student's
   single active one).
No match means the occurrence is ineligible. There is no fallback to
an arbitrary subscription.

A batch commit must resolve to exactly one subscription. Mixed batches
are rejected here, so the policy can change without touching the
orchestrator.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Optional, Union

from slotbook.errors import BookingConflictError, ConflictReason, RemoteServiceError
from slotbook.logging_context import get_session_logger
from slotbook.messages import CONFLICT_MESSAGES
from slotbook.schemas.slot_schema import SlotOccurrence, SlotTemplate
from slotbook.schemas.subscription_schema import Subscription
from slotbook.scheduling.selection import SelectionEntry
from slotbook.tools.sources import SubscriptionSource

logger = get_session_logger(__name__)

EntitlementStrategy = Callable[[Subscription, Mapping[str, int]], Optional[int]]

_FIRST_NUMBER = re.compile(r"(\d+)")


def from_snapshot(subscription: Subscription, package_totals: Mapping[str, int]) -> Optional[int]:
    return subscription.total_slots_snapshot


def from_total(subscription: Subscription, package_totals: Mapping[str, int]) -> Optional[int]:
    return subscription.total_slots


def from_package_catalog(subscription: Subscription, package_totals: Mapping[str, int]) -> Optional[int]:
    if not subscription.package_id:
        return None
    total = package_totals.get(subscription.package_id)
    return total if total else None


def from_usage(subscription: Subscription, package_totals: Mapping[str, int]) -> Optional[int]:
    if subscription.remaining_slots is None:
        return None
    return subscription.used_slot + subscription.remaining_slots


def from_package_name(subscription: Subscription, package_totals: Mapping[str, int]) -> Optional[int]:
    """First integer in the package name, e.g. "Weekday 20 sessions" -> 20."""
    match = _FIRST_NUMBER.search(subscription.package_name or "")
    return int(match.group(1)) if match else None


# Tried in order; the first non-None answer wins. None from all of them means unknown.
ENTITLEMENT_STRATEGIES: tuple[EntitlementStrategy, ...] = (
    from_snapshot,
    from_total,
    from_package_catalog,
    from_usage,
    from_package_name,
)


def total_entitlement(
    subscription: Subscription,
    package_totals: Optional[Mapping[str, int]] = None,
    strategies: Iterable[EntitlementStrategy] = ENTITLEMENT_STRATEGIES,
) -> Optional[int]:
    totals = package_totals or {}
    for strategy in strategies:
        value = strategy(subscription, totals)
        if value is not None:
            return value
    return None


def remaining_entitlement(
    subscription: Subscription,
    package_totals: Optional[Mapping[str, int]] = None,
) -> Optional[int]:
    if subscription.remaining_slots is not None:
        return subscription.remaining_slots
    total = total_entitlement(subscription, package_totals)
    if total is None:
        return None
    return max(total - subscription.used_slot, 0)


@dataclass(frozen=True)
class EligibilitySnapshot:
    """Active subscriptions and package totals from one fetch."""

    subscriptions: list[Subscription] = field(default_factory=list)
    package_totals: Mapping[str, int] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass
class BatchEligibility:
    """Resolution of a whole selection: the shared subscription and the occurrences without one."""

    subscription_id: Optional[str]
    invalid: list[Union[SlotOccurrence, SlotTemplate]] = field(default_factory=list)


class EligibilityResolver:
    """Resolves occurrences to subscriptions from a student's active packages."""

    def __init__(self, source: SubscriptionSource) -> None:
        self._source = source
        self._subscriptions: list[Subscription] = []
        self._package_totals: dict[str, int] = {}
        self.default_subscription_id: Optional[str] = None
        self.last_error: Optional[str] = None

    @property
    def subscriptions(self) -> list[Subscription]:
        """Active subscriptions only."""
        return list(self._subscriptions)

    @property
    def default_subscription(self) -> Optional[Subscription]:
        return self.get(self.default_subscription_id)

    def get(self, subscription_id: Optional[str]) -> Optional[Subscription]:
        if subscription_id is None:
            return None
        return next((s for s in self._subscriptions if s.id == subscription_id), None)

    async def load(self, student_id: str) -> list[Subscription]:
        """Fetch subscriptions, keep the ACTIVE ones, and pick the default."""
        return self.apply(await self.collect(student_id))

    async def collect(self, student_id: str) -> EligibilitySnapshot:
        """Fetch active subscriptions and package totals without touching the resolver."""
        try:
            rows = await self._source.list_subscriptions(student_id)
        except RemoteServiceError as exc:
            logger.warning("Subscription fetch failed for %s: %s", student_id, exc.message)
            return EligibilitySnapshot(error=exc.message)

        active: list[Subscription] = []
        for row in rows:
            try:
                subscription = Subscription.model_validate(row)
            except ValueError as exc:
                logger.warning("Skipping malformed subscription row: %s", exc)
                continue
            if subscription.is_active:
                active.append(subscription)

        package_totals: dict[str, int] = {}
        try:
            package_totals = await self._source.list_package_totals(student_id)
        except RemoteServiceError as exc:
            logger.debug("Package totals unavailable for %s: %s", student_id, exc.message)
        return EligibilitySnapshot(subscriptions=active, package_totals=package_totals)

    def apply(self, snapshot: EligibilitySnapshot) -> list[Subscription]:
        """Install a collected snapshot; keeps the chosen default while it stays active."""
        self.last_error = snapshot.error
        self._subscriptions = list(snapshot.subscriptions)
        self._package_totals.update(snapshot.package_totals)

        if self.get(self.default_subscription_id) is None:
            active = self._subscriptions
            preferred = next((s for s in active if s.status == "Active"), None)
            chosen = preferred or (active[0] if active else None)
            self.default_subscription_id = chosen.id if chosen else None

        logger.info(
            "Loaded %d active subscriptions (default: %s)",
            len(self._subscriptions), self.default_subscription_id,
        )
        return list(self._subscriptions)

    def select(self, subscription_id: str) -> Subscription:
        """Make an active subscription the default for this session."""
        subscription = self.get(subscription_id)
        if subscription is None:
            raise BookingConflictError(
                ConflictReason.INELIGIBLE, CONFLICT_MESSAGES[ConflictReason.INELIGIBLE]
            )
        self.default_subscription_id = subscription.id
        return subscription

    def total_entitlement(self, subscription: Subscription) -> Optional[int]:
        return total_entitlement(subscription, self._package_totals)

    def remaining_entitlement(self, subscription: Subscription) -> Optional[int]:
        return remaining_entitlement(subscription, self._package_totals)

    def resolve(
        self,
        occurrence: Union[SlotOccurrence, SlotTemplate],
        override: Optional[str] = None,
    ) -> Optional[str]:
        """Subscription id paying for ``occurrence``, or None if ineligible.

        ``override`` replaces the session default for this call only and
        must name an active subscription.
        """
        template = occurrence.template if isinstance(occurrence, SlotOccurrence) else occurrence
        if template.subscription_id:
            return template.subscription_id
        candidate = override if override is not None else self.default_subscription_id
        if self.get(candidate) is None:
            return None
        return candidate

    def resolve_batch(
        self, selections: Iterable[Union[SelectionEntry, SlotTemplate]]
    ) -> BatchEligibility:
        """Resolve each selection; all resolvable ones must share one subscription.

        Accepts selection entries (à la carte) or bare templates (recurring
        bookings, where the server expands the dates).

        Raises:
            BookingConflictError: MIXED_SUBSCRIPTIONS when two selections
                resolve to different subscriptions.
        """
        resolved: list[str] = []
        invalid: list[Union[SlotOccurrence, SlotTemplate]] = []
        for entry in selections:
            target = entry.occurrence if isinstance(entry, SelectionEntry) else entry
            subscription_id = self.resolve(target)
            if subscription_id is None:
                invalid.append(target)
            else:
                resolved.append(subscription_id)

        distinct = list(dict.fromkeys(resolved))
        if len(distinct) > 1:
            logger.info("Rejecting batch spanning subscriptions %s", distinct)
            raise BookingConflictError(
                ConflictReason.MIXED_SUBSCRIPTIONS,
                CONFLICT_MESSAGES[ConflictReason.MIXED_SUBSCRIPTIONS],
            )
        return BatchEligibility(subscription_id=distinct[0] if distinct else None, invalid=invalid)
