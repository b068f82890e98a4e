"""Compliance evaluation — pure functions over requirements and held proofs.

The gate answers one question: do the buyer's proofs satisfy every
requirement the property declares? It never performs I/O; the service layer
loads the proofs and hands them in, which keeps the evaluation trivially
safe to run twice for the same offer (at creation and again at acceptance).

For each declared requirement the candidate is the most recent proof of that
type that is verified, unexpired and (for accreditation) meets the threshold.
When no candidate exists the failure is classified so the caller gets an
actionable reason rather than a generic refusal:

    missing            no verified proof of that type at all
    threshold_too_low  an unexpired proof exists but its threshold is below
                       the property's minimum (``current`` carries the best
                       threshold held)
    expired            verified proofs exist but every one has expired
    restricted_list_mismatch
                       an unexpired jurisdiction proof exists but it was
                       generated against a restricted-country list that does
                       not include every country the property restricts
                       (``uncovered`` lists the countries it says nothing about)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

from property_settlement.domain.enums import ProofType, RequirementFailure

if TYPE_CHECKING:
    from collections.abc import Iterable


class ProofLike(Protocol):
    """Shape of a stored proof the gate can evaluate."""

    id: object
    type: str
    verified: bool
    threshold: int | None
    restricted_countries: list[str] | None
    expires_at: datetime
    created_at: datetime


@dataclass(frozen=True)
class ComplianceRequirements:
    """The requirements a property declares."""

    requires_accreditation: bool = False
    accreditation_threshold: int | None = None
    requires_jurisdiction: bool = False
    restricted_countries: tuple[str, ...] = ()

    @classmethod
    def from_property(cls, prop: object) -> ComplianceRequirements:
        return cls(
            requires_accreditation=bool(getattr(prop, "requires_accreditation", False)),
            accreditation_threshold=getattr(prop, "accreditation_threshold", None),
            requires_jurisdiction=bool(getattr(prop, "requires_jurisdiction", False)),
            restricted_countries=tuple(
                c.upper() for c in getattr(prop, "restricted_countries", None) or ()
            ),
        )

    @property
    def required_types(self) -> list[ProofType]:
        types = []
        if self.requires_accreditation:
            types.append(ProofType.ACCREDITATION)
        if self.requires_jurisdiction:
            types.append(ProofType.JURISDICTION)
        return types


@dataclass(frozen=True)
class ProofRequirement:
    """A single unmet requirement and why it is unmet."""

    type: ProofType
    reason: RequirementFailure
    required: int | None = None
    current: int | None = None
    expired_at: datetime | None = None
    uncovered: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        data: dict = {"type": self.type.value, "reason": self.reason.value}
        if self.required is not None:
            data["required"] = self.required
        if self.current is not None:
            data["current"] = self.current
        if self.expired_at is not None:
            data["expired_at"] = self.expired_at.isoformat()
        if self.uncovered:
            data["uncovered"] = list(self.uncovered)
        return data


@dataclass(frozen=True)
class ProofSnapshot:
    """The proof that satisfied a requirement, captured at check time."""

    proof_id: str
    type: ProofType
    threshold: int | None
    expires_at: datetime

    def to_dict(self) -> dict:
        return {
            "proof_id": self.proof_id,
            "type": self.type.value,
            "threshold": self.threshold,
            "expires_at": self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class EligibilityResult:
    """Outcome of a compliance check."""

    eligible: bool
    missing: list[ProofRequirement] = field(default_factory=list)
    matched: list[ProofSnapshot] = field(default_factory=list)
    checked_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "eligible": self.eligible,
            "missing": [m.to_dict() for m in self.missing],
            "matched": [m.to_dict() for m in self.matched],
            "checked_at": self.checked_at.isoformat() if self.checked_at else None,
        }


def evaluate_requirements(
    requirements: ComplianceRequirements,
    proofs: Iterable[ProofLike],
    now: datetime | None = None,
) -> EligibilityResult:
    """Evaluate the buyer's proofs against the declared requirements."""
    now = now or datetime.now(UTC)
    by_type: dict[str, list[ProofLike]] = {}
    for proof in proofs:
        by_type.setdefault(str(proof.type), []).append(proof)

    missing: list[ProofRequirement] = []
    matched: list[ProofSnapshot] = []

    for proof_type in requirements.required_types:
        minimum = (
            requirements.accreditation_threshold
            if proof_type is ProofType.ACCREDITATION
            else None
        )
        restricted = (
            frozenset(requirements.restricted_countries)
            if proof_type is ProofType.JURISDICTION
            else frozenset()
        )
        candidates = by_type.get(proof_type.value, [])
        outcome = _evaluate_one(proof_type, candidates, minimum, restricted, now)
        if isinstance(outcome, ProofSnapshot):
            matched.append(outcome)
        else:
            missing.append(outcome)

    return EligibilityResult(
        eligible=not missing,
        missing=missing,
        matched=matched,
        checked_at=now,
    )


def _evaluate_one(
    proof_type: ProofType,
    candidates: list[ProofLike],
    minimum: int | None,
    restricted: frozenset[str],
    now: datetime,
) -> ProofSnapshot | ProofRequirement:
    verified = sorted(
        (p for p in candidates if p.verified),
        key=lambda p: p.created_at,
        reverse=True,
    )
    if not verified:
        return ProofRequirement(type=proof_type, reason=RequirementFailure.MISSING, required=minimum)

    live = [p for p in verified if p.expires_at > now]
    if not live:
        return ProofRequirement(
            type=proof_type,
            reason=RequirementFailure.EXPIRED,
            required=minimum,
            expired_at=max(p.expires_at for p in verified),
        )

    if minimum is not None:
        sufficient = [p for p in live if p.threshold is not None and p.threshold >= minimum]
        if not sufficient:
            held = [p.threshold for p in live if p.threshold is not None]
            return ProofRequirement(
                type=proof_type,
                reason=RequirementFailure.THRESHOLD_TOO_LOW,
                required=minimum,
                current=max(held) if held else None,
            )
        live = sufficient

    if restricted:
        covering = [p for p in live if restricted <= _countries(p)]
        if not covering:
            return ProofRequirement(
                type=proof_type,
                reason=RequirementFailure.RESTRICTED_LIST_MISMATCH,
                uncovered=tuple(sorted(restricted - _countries(live[0]))),
            )
        live = covering

    best = live[0]
    return ProofSnapshot(
        proof_id=str(best.id),
        type=proof_type,
        threshold=best.threshold,
        expires_at=best.expires_at,
    )


def _countries(proof: ProofLike) -> frozenset[str]:
    return frozenset(c.upper() for c in proof.restricted_countries or ())
