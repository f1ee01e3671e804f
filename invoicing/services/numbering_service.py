"""
Sequential invoice number allocation.

Numbers look like PREFIX-YYYY-MM-0007: the allocation-time year and month
followed by a durable counter zero-padded to 4 digits. The counter lives in
a single authoritative backend (a database row or a Redis key) and is only
advanced under a row lock or an atomic increment, so concurrent callers
never receive the same value.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

import redis
from redis.exceptions import RedisError
from flask import Flask, current_app
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from invoicing.blueprints.metrics import invoices_allocated_total
from invoicing.exceptions import StorageUnavailableError
from invoicing.models import InvoiceCounter

logger = logging.getLogger(__name__)


def format_invoice_number(prefix: str, counter: int, when: datetime) -> str:
    """Build the external code, e.g. format_invoice_number('INV', 7, April 2024) -> 'INV-2024-04-0007'."""
    return f"{prefix}-{when.year:04d}-{when.month:02d}-{counter:04d}"


class SqlCounterStore:
    """
    Counter kept in the `invoice_counter` table.

    `allocate` locks the counter row (SELECT ... FOR UPDATE), reads n, writes
    n + 1 and commits before returning n. A missing row is created with
    INSERT ... ON CONFLICT DO NOTHING, so two first allocations racing each
    other both end up locking the same row.
    """

    def __init__(self, session_factory: Callable[[], Session], name: str = 'invoice_number', start: int = 1):
        self._session_factory = session_factory
        self.name = name
        self.start = start

    def _insert_if_missing(self, session: Session) -> None:
        dialect = session.get_bind().dialect.name
        if dialect == 'postgresql':
            insert = postgresql_insert
        elif dialect == 'sqlite':
            insert = sqlite_insert
        else:
            if session.get(InvoiceCounter, self.name) is None:
                session.add(InvoiceCounter(name=self.name, next_value=self.start))
                session.flush()
            return

        session.execute(
            insert(InvoiceCounter)
            .values(name=self.name, next_value=self.start)
            .on_conflict_do_nothing(index_elements=['name'])
        )

    def _locked_row(self, session: Session) -> InvoiceCounter:
        query = session.query(InvoiceCounter).filter(InvoiceCounter.name == self.name).with_for_update()
        row = query.first()
        if row is None:
            self._insert_if_missing(session)
            row = query.one()
        return row

    def ensure(self) -> None:
        """Create the counter row at `start` unless it already exists."""
        session = self._session_factory()
        try:
            self._insert_if_missing(session)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"[COUNTER] Failed to create counter '{self.name}': {e}")
            raise StorageUnavailableError('Invoice counter is unavailable') from e

    def peek(self) -> int:
        session = self._session_factory()
        try:
            row = session.query(InvoiceCounter).filter(InvoiceCounter.name == self.name).first()
            return row.next_value if row else self.start
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"[COUNTER] Failed to read counter '{self.name}': {e}")
            raise StorageUnavailableError('Invoice counter is unavailable') from e

    def allocate(self) -> int:
        session = self._session_factory()
        try:
            row = self._locked_row(session)
            current = row.next_value
            row.next_value = current + 1
            session.commit()
            return current
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"[COUNTER] Failed to advance counter '{self.name}': {e}")
            raise StorageUnavailableError('Invoice counter is unavailable') from e

    def set(self, value: int) -> None:
        session = self._session_factory()
        try:
            row = self._locked_row(session)
            row.next_value = value
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"[COUNTER] Failed to set counter '{self.name}': {e}")
            raise StorageUnavailableError('Invoice counter is unavailable') from e


class RedisCounterStore:
    """
    Counter kept in a Redis key holding the next value.

    `allocate` relies on INCR being atomic: the value returned by INCR minus
    one is the number this caller owns.
    """

    def __init__(self, client: redis.Redis, name: str = 'invoice_number', start: int = 1,
                 key_prefix: str = 'invoicing:counter'):
        self.client = client
        self.name = name
        self.start = start
        self.key = f"{key_prefix}:{name}"

    def peek(self) -> int:
        try:
            value = self.client.get(self.key)
        except RedisError as e:
            logger.error(f"[COUNTER] Redis read failed for {self.key}: {e}")
            raise StorageUnavailableError('Invoice counter is unavailable') from e
        return int(value) if value is not None else self.start

    def ensure(self) -> None:
        try:
            self.client.setnx(self.key, self.start)
        except RedisError as e:
            logger.error(f"[COUNTER] Redis write failed for {self.key}: {e}")
            raise StorageUnavailableError('Invoice counter is unavailable') from e

    def allocate(self) -> int:
        try:
            self.client.setnx(self.key, self.start)
            return int(self.client.incr(self.key)) - 1
        except RedisError as e:
            logger.error(f"[COUNTER] Redis increment failed for {self.key}: {e}")
            raise StorageUnavailableError('Invoice counter is unavailable') from e

    def set(self, value: int) -> None:
        try:
            self.client.set(self.key, value)
        except RedisError as e:
            logger.error(f"[COUNTER] Redis write failed for {self.key}: {e}")
            raise StorageUnavailableError('Invoice counter is unavailable') from e


class InvoiceNumberAllocator:
    """Mints invoice numbers from a counter store."""

    def __init__(self, store, prefix: str = 'INV', clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.prefix = prefix
        self.clock = clock or datetime.now

    def allocate(self) -> str:
        """Return the next invoice number and durably advance the counter."""
        counter = self.store.allocate()
        number = format_invoice_number(self.prefix, counter, self.clock())
        logger.info(f"[COUNTER] Allocated {number}")
        invoices_allocated_total.inc()
        return number

    def peek(self) -> str:
        """Return what `allocate` would produce next, without advancing."""
        return format_invoice_number(self.prefix, self.store.peek(), self.clock())

    def ensure_counter(self) -> None:
        """Create the counter at 1 if it does not exist yet; an existing value is kept."""
        self.store.ensure()

    def reset(self) -> None:
        """Set the counter back to 1."""
        self.store.set(1)
        logger.warning(f"[COUNTER] Counter '{self.store.name}' reset to 1")

    def set_counter(self, value: int) -> None:
        """Set the counter to an explicit next value (migrations, setup)."""
        if value < 1:
            raise ValueError('Counter value must be >= 1')
        self.store.set(value)
        logger.warning(f"[COUNTER] Counter '{self.store.name}' set to {value}")


def build_allocator(app: Flask) -> InvoiceNumberAllocator:
    """Create the allocator configured for this app."""
    backend = app.config.get('INVOICE_COUNTER_BACKEND', 'sql')
    name = app.config.get('INVOICE_COUNTER_NAME', 'invoice_number')

    if backend == 'redis':
        timeout = app.config.get('REDIS_TIMEOUT', 3)
        client = redis.from_url(
            app.config.get('REDIS_URL', 'redis://redis:6379/0'),
            decode_responses=True,
            socket_connect_timeout=timeout,
            socket_timeout=timeout
        )
        store = RedisCounterStore(client, name=name)
    elif backend == 'sql':
        from invoicing.database import get_session
        store = SqlCounterStore(get_session, name=name)
    else:
        raise ValueError(f"Unknown INVOICE_COUNTER_BACKEND: {backend}")

    logger.info(f"[COUNTER] Using '{backend}' counter backend")
    return InvoiceNumberAllocator(store, prefix=app.config.get('INVOICE_NUMBER_PREFIX', 'INV'))


def init_allocator(app: Flask) -> None:
    """Attach the allocator to the app (initialized once at startup)."""
    app.extensions['invoice_allocator'] = build_allocator(app)


def get_allocator() -> InvoiceNumberAllocator:
    """Get the allocator of the current app."""
    return current_app.extensions['invoice_allocator']
