"""
Unit of Work Pattern

Wraps one database transaction and publishes the domain events
collected during it only after the transaction has committed.
"""

from typing import List, Optional
import logging

from django.db import transaction

from shared.domain.base import DomainEvent

logger = logging.getLogger(__name__)


class DjangoUnitOfWork:
    """
    Django implementation of Unit of Work

    Usage:
        with DjangoUnitOfWork() as uow:
            schedule = load_box_schedule(box_id, lock=True)
            schedule.extend(booking_id, new_end)
            uow.collect_events(schedule)
        # events are published after commit

    If the block raises, the transaction rolls back and the collected
    events are discarded, so no handler ever sees a change that did not
    persist.
    """

    def __init__(self, using: Optional[str] = None):
        self._using = using
        self._events: List[DomainEvent] = []
        self._transaction = None

    def __enter__(self):
        self._transaction = transaction.atomic(using=self._using)
        self._transaction.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is None:
                self.commit()
            else:
                self.rollback()
        finally:
            if self._transaction:
                self._transaction.__exit__(exc_type, exc_val, exc_tb)

    def commit(self):
        """Schedule publishing of the collected events for after the commit."""
        logger.debug(f"Committing transaction with {len(self._events)} events")

        events = self._events.copy()
        self._events.clear()

        if events:
            transaction.on_commit(lambda: self._publish_events(events), using=self._using)

    def rollback(self):
        """Discard events, the atomic block rolls back the rows."""
        if self._events:
            logger.warning(f"Rolling back transaction, discarding {len(self._events)} events")
        self._events.clear()

    def collect_events(self, *aggregates):
        """Move pending events from the given aggregates into this unit of work."""
        for aggregate in aggregates:
            new_events = aggregate.events
            if new_events:
                self._events.extend(new_events)
                aggregate.clear_events()
                logger.debug(f"Collected {len(new_events)} events from {aggregate!r}")

    def add_event(self, event: DomainEvent):
        """Record an event that is not owned by an aggregate."""
        self._events.append(event)

    def _publish_events(self, events: List[DomainEvent]):
        from shared.application.message_bus import message_bus

        logger.info(f"Publishing {len(events)} domain events after commit")

        try:
            message_bus.publish_events(events)
        except Exception as e:
            # rows are committed already; handlers only notify
            logger.error(f"Error publishing events: {e}", exc_info=True)
