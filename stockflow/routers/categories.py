from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_audit_recorder, get_db
from stockflow.core.permissions import require_admin, require_any_role
from stockflow.core.security_current import Principal
from stockflow.models.category import Category
from stockflow.schemas.category import CategoryCreateIn, CategoryListOut, CategoryOut, CategoryUpdateIn
from stockflow.schemas.product import NextSkuOut
from stockflow.services.audit_service import AuditRecorder
from stockflow.services.catalog_service import (
    category_product_count,
    create_category,
    delete_category,
    get_category_or_404,
    list_categories,
    update_category,
)
from stockflow.services.sku_service import next_sku

router = APIRouter(prefix="/categories", tags=["categories"])


def _category_out(category: Category, product_count: int) -> CategoryOut:
    return CategoryOut(
        id=category.id,
        name=category.name,
        prefix=category.prefix,
        description=category.description,
        parent_id=category.parent_id,
        product_count=product_count,
        created_at=category.created_at,
    )


@router.get(
    "",
    response_model=CategoryListOut,
    summary="List categories",
    responses=error_responses(401, 500),
)
def list_categories_endpoint(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any_role),
):
    return CategoryListOut(items=[_category_out(row.category, row.product_count) for row in list_categories(db)])


@router.post(
    "",
    response_model=CategoryOut,
    status_code=201,
    summary="Create category",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def create_category_endpoint(
    payload: CategoryCreateIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    category = create_category(
        db,
        name=payload.name,
        prefix=payload.prefix,
        description=payload.description,
        parent_id=payload.parent_id,
        actor_id=principal.actor_id,
        audit=audit,
    )
    return _category_out(category, 0)


@router.patch(
    "/{category_id}",
    response_model=CategoryOut,
    summary="Update category",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def update_category_endpoint(
    category_id: int,
    payload: CategoryUpdateIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    category = update_category(
        db,
        category_id=category_id,
        changes=payload.model_dump(exclude_unset=True),
        actor_id=principal.actor_id,
        audit=audit,
    )
    return _category_out(category, category_product_count(db, category.id))


@router.delete(
    "/{category_id}",
    status_code=204,
    summary="Delete category",
    description="Blocked while products or sub-categories reference the category.",
    responses=error_responses(401, 403, 404, 409, 500),
)
def delete_category_endpoint(
    category_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    delete_category(db, category_id=category_id, actor_id=principal.actor_id, audit=audit)
    return Response(status_code=204)


@router.get(
    "/{category_id}/next-sku",
    response_model=NextSkuOut,
    summary="Preview next SKU",
    description="Advisory only; the value is allocated for real when the product is created.",
    responses=error_responses(401, 403, 404, 500),
)
def preview_next_sku(
    category_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    get_category_or_404(db, category_id)
    return NextSkuOut(category_id=category_id, sku=next_sku(db, category_id))
