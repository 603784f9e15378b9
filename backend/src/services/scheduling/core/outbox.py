"""
Post-commit side effects for the scheduling core.

Reward credits and audit records are queued on an ``Outbox`` while a unit of
work runs and are handed to an ``OutboxDispatcher`` only after the unit of
work commits. Delivery is best-effort: collaborator failures are logged and
never reach the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from crm_platform.db.schema import AuditLogEntry, RewardLedgerEntry
from crm_platform.db.session import SessionManager

from ..database.schema import EventType

logger = logging.getLogger(__name__)

AUDIT_ENTITY_TYPE = "schedule_event"

KIND_REWARD = "reward_credit"
KIND_AUDIT = "audit_record"

# (points, coins) by reason, keyed on whether the event is a meeting
REWARDS = {
    "event_created": {True: (10, 5), False: (8, 4)},
    "event_completed": {True: (15, 8), False: (10, 5)},
}


def reward_for(reason: str, event_type: EventType) -> tuple[int, int]:
    """Points and secondary coins for a qualifying action on an event type."""
    return REWARDS[reason][event_type == EventType.meeting]


# ============================================================================
# COLLABORATOR INTERFACES
# ============================================================================


class RewardLedger(Protocol):
    def credit(
        self,
        user_id: str,
        tenant_id: str,
        amount: int,
        reason: str,
        *,
        coins: int = 0,
        entity_id: Optional[str] = None,
    ) -> None: ...


class AuditLog(Protocol):
    def record(
        self,
        actor: str,
        tenant: str,
        action: str,
        entity_type: str,
        entity_id: str,
        description: Optional[str] = None,
    ) -> None: ...


class SqlRewardLedger:
    """Appends reward credits to reward_ledger_entries in its own transaction."""

    def __init__(self, sessions: SessionManager):
        self.sessions = sessions

    def credit(self, user_id, tenant_id, amount, reason, *, coins=0, entity_id=None):
        with self.sessions.with_session() as session:
            session.add(
                RewardLedgerEntry(
                    tenant_id=tenant_id,
                    user_id=user_id,
                    points=amount,
                    coins=coins,
                    reason=reason,
                    entity_type=AUDIT_ENTITY_TYPE,
                    entity_id=entity_id,
                )
            )


class SqlAuditLog:
    """Appends audit records to audit_log_entries in its own transaction."""

    def __init__(self, sessions: SessionManager):
        self.sessions = sessions

    def record(self, actor, tenant, action, entity_type, entity_id, description=None):
        with self.sessions.with_session() as session:
            session.add(
                AuditLogEntry(
                    tenant_id=tenant,
                    actor_id=actor,
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    description=description,
                )
            )


# ============================================================================
# OUTBOX
# ============================================================================


@dataclass(frozen=True)
class OutboxMessage:
    kind: str
    payload: dict[str, Any]


@dataclass
class Outbox:
    """Side effects collected during one unit of work."""

    messages: list[OutboxMessage] = field(default_factory=list)

    def reward(
        self,
        user_id: str,
        tenant_id: str,
        reason: str,
        event_type: EventType,
        entity_id: str,
    ) -> None:
        points, coins = reward_for(reason, event_type)
        self.messages.append(
            OutboxMessage(
                KIND_REWARD,
                {
                    "user_id": user_id,
                    "tenant_id": tenant_id,
                    "amount": points,
                    "coins": coins,
                    "reason": reason,
                    "entity_id": entity_id,
                },
            )
        )

    def audit(
        self,
        actor: str,
        tenant: str,
        action: str,
        entity_id: str,
        description: Optional[str] = None,
    ) -> None:
        self.messages.append(
            OutboxMessage(
                KIND_AUDIT,
                {
                    "actor": actor,
                    "tenant": tenant,
                    "action": action,
                    "entity_type": AUDIT_ENTITY_TYPE,
                    "entity_id": entity_id,
                    "description": description,
                },
            )
        )

    def drain(self) -> list[OutboxMessage]:
        drained, self.messages = self.messages, []
        return drained

    def discard(self) -> None:
        if self.messages:
            logger.debug("Discarding %d queued side effects", len(self.messages))
        self.messages = []


class OutboxDispatcher:
    """Delivers drained outbox messages to the collaborators."""

    def __init__(
        self,
        reward_ledger: Optional[RewardLedger] = None,
        audit_log: Optional[AuditLog] = None,
    ):
        self.reward_ledger = reward_ledger
        self.audit_log = audit_log

    def publish(self, messages: list[OutboxMessage]) -> int:
        """
        Deliver every message; returns how many were delivered.
        A failing collaborator is logged and skipped.
        """
        delivered = 0
        for message in messages:
            try:
                if self._deliver(message):
                    delivered += 1
            except Exception:
                logger.exception(
                    "Side effect %s failed for %s",
                    message.kind,
                    message.payload.get("entity_id"),
                )
        return delivered

    def _deliver(self, message: OutboxMessage) -> bool:
        payload = message.payload
        if message.kind == KIND_REWARD:
            if self.reward_ledger is None:
                return False
            self.reward_ledger.credit(
                payload["user_id"],
                payload["tenant_id"],
                payload["amount"],
                payload["reason"],
                coins=payload["coins"],
                entity_id=payload["entity_id"],
            )
            return True
        if message.kind == KIND_AUDIT:
            if self.audit_log is None:
                return False
            self.audit_log.record(
                payload["actor"],
                payload["tenant"],
                payload["action"],
                payload["entity_type"],
                payload["entity_id"],
                payload["description"],
            )
            return True
        logger.warning("Unknown outbox message kind: %s", message.kind)
        return False
