"""Lifecycle State Machine Guards.

Uses python-statemachine to enforce legal state transitions at the domain
level. No matter what the API or a background task does, an illegal
transition (e.g. offer rejected -> accepted) raises before any row is
written.

Machines are instantiated per-entity at the entity's current status and
validate a transition before the repository performs its compare-and-swap.

Offer:
    pending   -> accepted   (accept)
    pending   -> rejected   (reject)
    pending   -> expired    (expire)
    accepted  -> completed  (complete)

Escrow (locally inferred):
    created -> funded    (fund)
    funded  -> released  (release)
    funded  -> refunded  (refund)

Listing:
    draft         -> listed         (publish)
    listed        -> offer_pending  (lock_for_offer)
    offer_pending -> sold           (sell)
    offer_pending -> listed         (unlock)
    listed        -> delisted       (delist)
    draft         -> delisted       (delist)
    delisted      -> listed         (publish)

Consumption:
    pending   -> consuming  (start)
    consuming -> consumed   (succeed)
    consuming -> pending    (schedule_retry)
    consuming -> failed     (give_up)
    consuming -> consuming  (reclaim, crash recovery)
    failed    -> pending    (manual_retry)
    pending   -> pending    (manual_retry, nothing in flight)

Verification:
    unverified/rejected            -> pending   (submit)
    unverified/pending/rejected    -> verified  (approve)
    unverified/pending/verified    -> rejected  (reject)
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from property_settlement.domain.exceptions import InvalidStateTransitionError


class _StatusGuard:
    """Shared construction and helpers for the lifecycle machines."""

    machine_name = "entity"

    def __init__(self, current_status: str) -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The entity's current status value (e.g. "pending").
        """
        current_status = str(current_status)
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown {self.machine_name} status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.name for event in self.allowed_events]


class OfferStateMachine(_StatusGuard, StateMachine):
    """Guards offer status; accepted -> completed is the only exit from accepted."""

    machine_name = "offer"

    pending = State("Pending", value="pending", initial=True)
    accepted = State("Accepted", value="accepted")
    rejected = State("Rejected", value="rejected", final=True)
    expired = State("Expired", value="expired", final=True)
    completed = State("Completed", value="completed", final=True)

    accept = pending.to(accepted)
    reject = pending.to(rejected)
    expire = pending.to(expired)
    complete = accepted.to(completed)


class EscrowStateMachine(_StatusGuard, StateMachine):
    """Guards the locally inferred escrow status."""

    machine_name = "escrow"

    created = State("Created", value="created", initial=True)
    funded = State("Funded", value="funded")
    released = State("Released", value="released", final=True)
    refunded = State("Refunded", value="refunded", final=True)

    fund = created.to(funded)
    release = funded.to(released)
    refund = funded.to(refunded)


class ListingStateMachine(_StatusGuard, StateMachine):
    """Guards the property listing status."""

    machine_name = "listing"

    draft = State("Draft", value="draft", initial=True)
    listed = State("Listed", value="listed")
    offer_pending = State("OfferPending", value="offer_pending")
    sold = State("Sold", value="sold", final=True)
    delisted = State("Delisted", value="delisted")

    publish = draft.to(listed) | delisted.to(listed)
    lock_for_offer = listed.to(offer_pending)
    unlock = offer_pending.to(listed)
    sell = offer_pending.to(sold)
    delist = listed.to(delisted) | draft.to(delisted)


class ConsumptionStateMachine(_StatusGuard, StateMachine):
    """Guards the background note consumption status."""

    machine_name = "consumption"

    pending = State("Pending", value="pending", initial=True)
    consuming = State("Consuming", value="consuming")
    consumed = State("Consumed", value="consumed", final=True)
    failed = State("Failed", value="failed")

    start = pending.to(consuming)
    succeed = consuming.to(consumed)
    schedule_retry = consuming.to(pending)
    give_up = consuming.to(failed)
    reclaim = consuming.to.itself()
    manual_retry = failed.to(pending) | pending.to.itself()


class VerificationStateMachine(_StatusGuard, StateMachine):
    """Guards the administrative verification status of a property."""

    machine_name = "verification"

    unverified = State("Unverified", value="unverified", initial=True)
    pending = State("Pending", value="pending")
    verified = State("Verified", value="verified")
    rejected = State("Rejected", value="rejected")

    submit = unverified.to(pending) | rejected.to(pending)
    approve = unverified.to(verified) | pending.to(verified) | rejected.to(verified)
    reject = unverified.to(rejected) | pending.to(rejected) | verified.to(rejected)


def validate_transition(
    machine_cls: type[_StatusGuard],
    current_status: str,
    event_name: str,
) -> str:
    """Validate a state transition and return the new status.

    Creates a temporary state machine at ``current_status``, fires the named
    event, and returns the resulting status string.

    Raises:
        InvalidStateTransitionError: If the transition is illegal.
        ValueError: If the status or event name is unknown.
    """
    sm = machine_cls(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    try:
        event_method()
    except TransitionNotAllowed as err:
        raise InvalidStateTransitionError(
            machine_cls.machine_name, current_status, event_name
        ) from err
    return sm.status
