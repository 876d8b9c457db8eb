import pytest

from stockflow.core.errors import ConflictError, ValidationError
from stockflow.models.location import LOCATION_PHYSICAL, LOCATION_VIRTUAL
from stockflow.services.catalog_service import (
    create_category,
    delete_category,
    list_categories,
    update_category,
)
from stockflow.services.inventory_service import record_movement
from stockflow.services.location_service import (
    create_location,
    delete_location,
    list_locations,
    update_location,
)


def test_category_prefix_is_upper_cased_and_unique(db, admin):
    category = create_category(db, name="Elektronik", prefix=" elk ", actor_id=admin.id)
    assert category.prefix == "ELK"

    with pytest.raises(ConflictError):
        create_category(db, name="Elektro", prefix="ELK", actor_id=admin.id)
    with pytest.raises(ConflictError):
        create_category(db, name="elektronik", prefix="ELX", actor_id=admin.id)
    with pytest.raises(ValidationError):
        create_category(db, name="Panjang", prefix="ABCDEFGHIJK", actor_id=admin.id)


def test_category_cannot_parent_itself_or_form_cycle(db, admin):
    root = create_category(db, name="Alat", prefix="ALT", actor_id=admin.id)
    child = create_category(db, name="Alat Tangan", prefix="ATG", parent_id=root.id, actor_id=admin.id)

    with pytest.raises(ValidationError):
        update_category(db, category_id=root.id, changes={"parent_id": root.id}, actor_id=admin.id)
    with pytest.raises(ValidationError):
        update_category(db, category_id=root.id, changes={"parent_id": child.id}, actor_id=admin.id)


def test_category_delete_blocked_by_products_and_children(db, admin, make_product):
    root = create_category(db, name="Alat", prefix="ALT", actor_id=admin.id)
    create_category(db, name="Alat Tangan", prefix="ATG", parent_id=root.id, actor_id=admin.id)
    make_product("Obeng", prefix="ATG")

    with pytest.raises(ConflictError):
        delete_category(db, category_id=root.id, actor_id=admin.id)
    child = next(row.category for row in list_categories(db) if row.category.prefix == "ATG")
    with pytest.raises(ConflictError):
        delete_category(db, category_id=child.id, actor_id=admin.id)

    empty = create_category(db, name="Kosong", prefix="KSG", actor_id=admin.id)
    delete_category(db, category_id=empty.id, actor_id=admin.id)
    assert {row.category.prefix for row in list_categories(db)} == {"ALT", "ATG"}


def test_location_parent_must_share_type(db, admin):
    gudang = create_location(db, name="Gudang", actor_id=admin.id)
    with pytest.raises(ValidationError):
        create_location(db, name="Servis", kind=LOCATION_VIRTUAL, parent_id=gudang.id, actor_id=admin.id)

    rak = create_location(db, name="Rak 1", kind=LOCATION_PHYSICAL, parent_id=gudang.id, actor_id=admin.id)
    assert rak.parent_id == gudang.id

    with pytest.raises(ValidationError):
        update_location(db, location_id=gudang.id, changes={"type": LOCATION_VIRTUAL}, actor_id=admin.id)
    with pytest.raises(ValidationError):
        create_location(db, name="Aneh", kind="ATTIC", actor_id=admin.id)


def test_location_hierarchy_rejects_self_parent_and_cycles(db, admin):
    gudang = create_location(db, name="Gudang", actor_id=admin.id)
    rak = create_location(db, name="Rak", parent_id=gudang.id, actor_id=admin.id)
    laci = create_location(db, name="Laci", parent_id=rak.id, actor_id=admin.id)

    with pytest.raises(ValidationError):
        update_location(db, location_id=gudang.id, changes={"parent_id": gudang.id}, actor_id=admin.id)
    with pytest.raises(ValidationError):
        update_location(db, location_id=gudang.id, changes={"parent_id": laci.id}, actor_id=admin.id)


def test_location_delete_blocked_by_children_stock_and_history(db, admin, make_product):
    product = make_product(stock=0)
    gudang = create_location(db, name="Gudang", actor_id=admin.id)
    create_location(db, name="Rak", parent_id=gudang.id, actor_id=admin.id)
    with pytest.raises(ConflictError):
        delete_location(db, location_id=gudang.id, actor_id=admin.id)

    shelf = create_location(db, name="Shelf", actor_id=admin.id)
    record_movement(db, product_id=product.id, from_location_id=None, to_location_id=shelf.id, quantity=2, actor_id=admin.id)
    with pytest.raises(ConflictError):
        delete_location(db, location_id=shelf.id, actor_id=admin.id)

    totals = {row.location.name: row.total_quantity for row in list_locations(db)}
    assert totals["Shelf"] == 2

    spare = create_location(db, name="Cadangan", actor_id=admin.id)
    delete_location(db, location_id=spare.id, actor_id=admin.id)
    assert "Cadangan" not in {row.location.name for row in list_locations(db)}
