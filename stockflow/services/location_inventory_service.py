from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockflow.models.location import Location, ProductLocation

_UPSERT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _update_existing(db: Session, *, product_id: int, location_id: int, qty_delta: int) -> int:
    result = db.execute(
        update(ProductLocation)
        .where(
            ProductLocation.product_id == product_id,
            ProductLocation.location_id == location_id,
        )
        .values(quantity=ProductLocation.quantity + qty_delta, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def upsert_product_location(
    db: Session,
    *,
    product_id: int,
    location_id: int,
    qty_delta: int,
) -> None:
    """
    Add ``qty_delta`` to the (product, location) row, creating it when missing.

    A missing row created by a decrement starts negative; that state is kept
    as-is until a later movement brings stock back.
    """
    insert_fn = _UPSERT_INSERTS.get(db.get_bind().dialect.name)
    if insert_fn is not None:
        stmt = insert_fn(ProductLocation).values(
            product_id=product_id,
            location_id=location_id,
            quantity=qty_delta,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["product_id", "location_id"],
            set_={
                "quantity": ProductLocation.quantity + qty_delta,
                "updated_at": func.now(),
            },
        )
        db.execute(stmt)
        return

    # Dialects without ON CONFLICT: update, else insert under a savepoint and
    # fall back to the update once if a concurrent insert won the race.
    if _update_existing(db, product_id=product_id, location_id=location_id, qty_delta=qty_delta):
        return
    try:
        with db.begin_nested():
            db.add(ProductLocation(product_id=product_id, location_id=location_id, quantity=qty_delta))
            db.flush()
    except IntegrityError:
        _update_existing(db, product_id=product_id, location_id=location_id, qty_delta=qty_delta)


def get_location_product_stock(db: Session, *, product_id: int, location_id: int) -> int:
    q = select(func.coalesce(func.sum(ProductLocation.quantity), 0)).where(
        ProductLocation.product_id == product_id,
        ProductLocation.location_id == location_id,
    )
    return int(db.execute(q).scalar_one())


def get_located_stock_total(db: Session, *, product_id: int) -> int:
    q = select(func.coalesce(func.sum(ProductLocation.quantity), 0)).where(
        ProductLocation.product_id == product_id,
    )
    return int(db.execute(q).scalar_one())


def list_product_location_rows(db: Session, *, product_id: int) -> list[tuple[int, str, str, int]]:
    rows = db.execute(
        select(Location.id, Location.name, Location.type, ProductLocation.quantity)
        .join(Location, Location.id == ProductLocation.location_id)
        .where(ProductLocation.product_id == product_id)
        .order_by(Location.type.asc(), Location.name.asc())
    ).all()
    return [(int(location_id), name, kind, int(qty)) for location_id, name, kind, qty in rows]
