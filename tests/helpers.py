"""Shared builders for capital kernel tests."""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from capital_kernel.db.engine import session_scope
from capital_kernel.domain.dtos import (
    Actor,
    ActorRole,
    CreateCapitalCallCommand,
    LPCommitment,
)
from capital_kernel.models.roster import Deal, LPActor

ORG_ID = "org-acme"
OTHER_ORG_ID = "org-other"

LP_SEED = (
    ("Alpha Partners LP", Decimal("500000.00"), "lp-alpha", "alpha@example.com"),
    ("Beta Capital LLC", Decimal("300000.00"), "lp-beta", "beta@example.com"),
    ("Gamma Family Office", Decimal("200000.00"), "lp-gamma", "gamma@example.com"),
)


@dataclass(frozen=True)
class SeededDeal:
    id: UUID
    organization_id: str
    lps: dict[str, LPCommitment]

    def lp(self, name: str) -> LPCommitment:
        return self.lps[name]


def seed_deal(session_factory, organization_id=ORG_ID, name="Maple Street Apartments", lps=LP_SEED):
    """Insert a deal and its LP roster; return a SeededDeal."""
    with session_scope(session_factory) as session:
        deal = Deal(organization_id=organization_id, name=name)
        session.add(deal)
        session.flush()
        rows = []
        for entity_name, commitment, auth_user_id, email in lps:
            row = LPActor(
                deal_id=deal.id,
                entity_name=entity_name,
                commitment=commitment,
                auth_user_id=auth_user_id,
                email=email,
                status="ACTIVE",
            )
            session.add(row)
            rows.append(row)
        session.flush()
        return SeededDeal(
            id=deal.id,
            organization_id=organization_id,
            lps={row.entity_name: row.to_dto() for row in rows},
        )


def lp_actor_for(auth_user_id: str, email: str | None = None) -> Actor:
    return Actor(
        id=auth_user_id,
        name=auth_user_id,
        role=ActorRole.LP,
        organization_id="lp-portal",
        email=email,
    )


def make_command(total="100000.00", title="Q1 Capital Call", **kwargs) -> CreateCapitalCallCommand:
    return CreateCapitalCallCommand(
        title=title,
        total_amount=Decimal(total),
        due_date=kwargs.pop("due_date", date(2025, 4, 1)),
        wire_instructions=kwargs.pop("wire_instructions", "Wire to First Bank, ABA 021000021"),
        **kwargs,
    )


def allocation_for(record, lp: LPCommitment):
    """The allocation of ``record`` that belongs to ``lp``."""
    return next(a for a in record.allocations if a.lp_actor_id == lp.id)


def naive(value: datetime) -> datetime:
    """Drop tzinfo; SQLite hands timestamps back without it."""
    return value.replace(tzinfo=None)


class RecordingSnapshotProvider:
    def __init__(self, snapshot_id="snap-0001"):
        self.snapshot_id = snapshot_id
        self.calls = []

    def create_snapshot(self, deal_id, reason, actor):
        self.calls.append((deal_id, reason, actor.id))
        return self.snapshot_id


class RecordingDispatcher:
    def __init__(self):
        self.events = []

    def emit(self, event_type, payload):
        self.events.append((event_type, payload))

    def of_type(self, event_type):
        return [payload for kind, payload in self.events if kind == event_type]
