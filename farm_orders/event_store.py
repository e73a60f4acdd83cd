"""
Order Service — order event log

Every change to an order is appended here inside the same transaction as
the change itself, giving an audit trail per order.

Versions are numbered per order; the UNIQUE(order_id, version) constraint
turns two writers racing on the same order into a ConflictError for the
loser instead of a silently interleaved history.
"""

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import JSON, DateTime, Integer, String, Uuid, bindparam, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import ConflictError

_CURRENT_VERSION = (
    text("SELECT COALESCE(MAX(version), 0) AS version FROM order_events WHERE order_id = :order_id")
    .bindparams(bindparam("order_id", type_=Uuid))
    .columns(version=Integer)
)

_APPEND = text("""
    INSERT INTO order_events (order_id, event_type, event_data, version, created_at)
    VALUES (:order_id, :event_type, :event_data, :version, :now)
""").bindparams(
    bindparam("order_id", type_=Uuid),
    bindparam("event_data", type_=JSON),
    bindparam("now", type_=DateTime(timezone=True)),
)

_LOAD = (
    text("""
        SELECT order_id, event_type, event_data, version, created_at
        FROM order_events
        WHERE order_id = :order_id
        ORDER BY version ASC
    """)
    .bindparams(bindparam("order_id", type_=Uuid))
    .columns(
        order_id=Uuid,
        event_type=String,
        event_data=JSON,
        version=Integer,
        created_at=DateTime(timezone=True),
    )
)


async def current_version(session: AsyncSession, order_id: UUID) -> int:
    result = await session.execute(_CURRENT_VERSION, {"order_id": order_id})
    return int(result.scalar_one())


async def append_event(
    session: AsyncSession,
    order_id: UUID,
    event_type: str,
    event_data: dict,
    expected_version: int | None = None,
) -> int:
    """
    Append an event and return its version.

    With expected_version omitted the next free version is used.
    """
    if expected_version is None:
        expected_version = await current_version(session, order_id)
    new_version = expected_version + 1
    try:
        await session.execute(
            _APPEND,
            {
                "order_id": order_id,
                "event_type": event_type,
                "event_data": event_data,
                "version": new_version,
                "now": datetime.now(timezone.utc),
            },
        )
    except IntegrityError as e:
        raise ConflictError(
            "Order was modified concurrently, retry the request",
            order_id=str(order_id),
            version=new_version,
        ) from e
    return new_version


async def load_events(session: AsyncSession, order_id: UUID) -> list[dict]:
    """All events of one order, oldest first."""
    result = await session.execute(_LOAD, {"order_id": order_id})
    return [
        {
            "order_id": str(row.order_id),
            "event_type": row.event_type,
            "event_data": row.event_data,
            "version": row.version,
            "created_at": row.created_at.isoformat() if row.created_at else None,
        }
        for row in result.fetchall()
    ]
