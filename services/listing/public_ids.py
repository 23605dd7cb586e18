"""
services/listing/public_ids.py
Human-readable public identifiers (SRV_001, PKG_014) handed out on first
approval. The counter row lives in public_id_sequences and is advanced inside
the approving transaction, so a rolled-back approval also rolls the counter
back and the sequence stays gapless.
"""

import logging

from sqlalchemy import Integer, cast, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import store_call
from config.settings import settings
from shared.models.models import Listing, ListingKind, PublicIdSequence
from shared.utils.exceptions import AllocationError, TransientStoreError

logger = logging.getLogger(__name__)


def prefix_for(kind: ListingKind) -> str:
    if kind == ListingKind.PACKAGE:
        return settings.PACKAGE_ID_PREFIX
    return settings.SERVICE_ID_PREFIX


def format_public_id(kind: ListingKind, number: int) -> str:
    return f"{prefix_for(kind)}{number:0{settings.PUBLIC_ID_PAD}d}"


async def _max_existing_suffix(db: AsyncSession, kind: ListingKind) -> int:
    prefix = prefix_for(kind)
    suffix = func.substr(Listing.public_id, len(prefix) + 1)
    result = await store_call(
        db.execute(
            select(func.max(cast(suffix, Integer))).where(
                Listing.kind == kind,
                Listing.public_id.is_not(None),
                Listing.public_id.like(f"{prefix}%"),
            )
        ),
        operation="public id seed lookup",
    )
    return result.scalar() or 0


async def _advance(db: AsyncSession, entity_class: str):
    result = await store_call(
        db.execute(
            update(PublicIdSequence)
            .where(PublicIdSequence.entity_class == entity_class)
            .values(last_value=PublicIdSequence.last_value + 1)
            .returning(PublicIdSequence.last_value)
        ),
        operation="public id advance",
    )
    return result.scalar_one_or_none()


async def _seed(db: AsyncSession, kind: ListingKind) -> None:
    """Create the counter row from the highest suffix already in use."""
    start = await _max_existing_suffix(db, kind)
    try:
        async with db.begin_nested():
            db.add(PublicIdSequence(entity_class=kind.value, last_value=start))
        logger.info(f"Seeded {kind.value} public id sequence at {start}")
    except IntegrityError:
        # A concurrent allocator seeded it first; its row wins.
        logger.info(f"{kind.value} public id sequence already seeded")


async def next_public_id(db: AsyncSession, kind: ListingKind) -> str:
    """
    Reserve the next identifier for ``kind``.

    Raises AllocationError when the store cannot be read or written; never
    falls back to a default number.
    """
    try:
        number = await _advance(db, kind.value)
        if number is None:
            await _seed(db, kind)
            number = await _advance(db, kind.value)
        if number is None:
            raise AllocationError(f"No public id sequence for {kind.value}")
    except AllocationError:
        raise
    except TransientStoreError as exc:
        logger.error(f"Public id allocation for {kind.value} hit an unavailable store: {exc}")
        raise AllocationError(f"Could not allocate a {kind.value} identifier") from (exc.__cause__ or exc)
    except SQLAlchemyError as exc:
        logger.error(f"Public id allocation failed for {kind.value}: {exc}")
        raise AllocationError(f"Could not allocate a {kind.value} identifier") from exc

    return format_public_id(kind, number)


async def allocate_public_id(db: AsyncSession, listing: Listing) -> str:
    """Return the listing's public id, allocating one if it has none yet."""
    if listing.public_id:
        return listing.public_id
    public_id = await next_public_id(db, listing.kind)
    logger.info(f"Allocated {public_id} for listing {listing.id}")
    return public_id
