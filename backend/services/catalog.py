"""Item catalog : items, catégories, fournisseurs (lecture majoritaire)."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from backend.app.core.errors import ConflictError, NotFoundError, ValidationError
from backend.app.db.models.models_v1 import Category, Item, PurchaseOrder, StockBatch, StockIn, Supplier
from backend.app.db.session import unit_of_work

logger = logging.getLogger(__name__)

ITEM_MUTABLE_FIELDS = ("name", "category_id", "unit_of_measure", "reorder_level", "supplier_id", "active")
SUPPLIER_MUTABLE_FIELDS = ("name", "contact_person", "phone", "email", "address", "active")


def get_item(db: Session, item_id: int) -> Item:
    item = db.get(Item, item_id)
    if not item:
        raise NotFoundError(f"Item {item_id} not found")
    return item


def list_items(
    db: Session,
    *,
    search: str | None = None,
    category_id: int | None = None,
    active: bool | None = None,
) -> list[Item]:
    stmt = select(Item)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(Item.name.ilike(pattern), Item.code.ilike(pattern)))
    if category_id is not None:
        stmt = stmt.where(Item.category_id == category_id)
    if active is not None:
        stmt = stmt.where(Item.active == active)
    return list(db.execute(stmt.order_by(Item.name)).scalars().all())


def on_hand(db: Session, item_id: int) -> int:
    """Somme des qty_available de tous les lots de l'item."""
    total = db.execute(
        select(func.coalesce(func.sum(StockBatch.qty_available), 0)).where(StockBatch.item_id == item_id)
    ).scalar_one()
    return int(total)


def _check_refs(db: Session, category_id: int | None, supplier_id: int | None) -> None:
    errors: list[dict[str, Any]] = []
    if category_id is not None and not db.get(Category, category_id):
        errors.append({"field": "category_id", "message": f"unknown category {category_id}"})
    if supplier_id is not None and not db.get(Supplier, supplier_id):
        errors.append({"field": "supplier_id", "message": f"unknown supplier {supplier_id}"})
    if errors:
        raise ValidationError("Invalid item references", errors=errors)


def create_item(
    db: Session,
    *,
    code: str,
    name: str,
    unit_of_measure: str = "pcs",
    reorder_level: int = 0,
    category_id: int | None = None,
    supplier_id: int | None = None,
    active: bool = True,
) -> Item:
    with unit_of_work(db):
        if reorder_level < 0:
            raise ValidationError("reorder_level must be 0 or greater")
        exists = db.execute(select(Item).where(Item.code == code)).scalar_one_or_none()
        if exists:
            raise ConflictError(f"Item code {code} already exists")
        _check_refs(db, category_id, supplier_id)

        item = Item(
            code=code,
            name=name,
            unit_of_measure=unit_of_measure,
            reorder_level=reorder_level,
            category_id=category_id,
            supplier_id=supplier_id,
            active=active,
        )
        db.add(item)
        db.flush()

    logger.info("Item created: %s (%s)", item.code, item.id)
    return item


def update_item(db: Session, item_id: int, **changes: Any) -> Item:
    """Attributs catalogue modifiables ; l'identité (id, code) ne change pas."""
    with unit_of_work(db):
        item = get_item(db, item_id)
        unknown = set(changes) - set(ITEM_MUTABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields not updatable: {', '.join(sorted(unknown))}")
        if changes.get("reorder_level") is not None and changes["reorder_level"] < 0:
            raise ValidationError("reorder_level must be 0 or greater")
        _check_refs(db, changes.get("category_id"), changes.get("supplier_id"))

        for field, value in changes.items():
            setattr(item, field, value)
        db.flush()

    return item


def list_categories(db: Session) -> list[Category]:
    return list(db.execute(select(Category).order_by(Category.name)).scalars().all())


def create_category(db: Session, *, name: str) -> Category:
    with unit_of_work(db):
        if db.execute(select(Category).where(Category.name == name)).scalar_one_or_none():
            raise ConflictError("Category already exists")
        cat = Category(name=name)
        db.add(cat)
        db.flush()
    return cat


def list_suppliers(db: Session, *, active: bool | None = None) -> list[Supplier]:
    stmt = select(Supplier)
    if active is not None:
        stmt = stmt.where(Supplier.active == active)
    return list(db.execute(stmt.order_by(Supplier.name)).scalars().all())


def create_supplier(
    db: Session,
    *,
    name: str,
    contact_person: str | None = None,
    phone: str | None = None,
    email: str | None = None,
    address: str | None = None,
) -> Supplier:
    with unit_of_work(db):
        if db.execute(select(Supplier).where(Supplier.name == name)).scalar_one_or_none():
            raise ConflictError("Supplier already exists")
        s = Supplier(
            name=name,
            contact_person=contact_person,
            phone=phone,
            email=email,
            address=address,
            active=True,
        )
        db.add(s)
        db.flush()
    return s


def get_supplier(db: Session, supplier_id: int) -> Supplier:
    s = db.get(Supplier, supplier_id)
    if not s:
        raise NotFoundError(f"Supplier {supplier_id} not found")
    return s


def update_supplier(db: Session, supplier_id: int, **changes: Any) -> Supplier:
    with unit_of_work(db):
        s = get_supplier(db, supplier_id)
        unknown = set(changes) - set(SUPPLIER_MUTABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields not updatable: {', '.join(sorted(unknown))}")
        for required in ("name", "active"):
            if required in changes and changes[required] is None:
                raise ValidationError(f"{required} cannot be null")
        name = changes.get("name")
        if name is not None and name != s.name:
            if db.execute(select(Supplier.id).where(Supplier.name == name)).first():
                raise ConflictError("Supplier already exists")

        for field, value in changes.items():
            setattr(s, field, value)
        db.flush()

    logger.info("Supplier updated: %s (%s)", s.name, s.id)
    return s


def supplier_usage(db: Session, supplier_id: int) -> dict[str, int]:
    """Références vers le fournisseur (items, bons de commande, réceptions)."""

    def _count(model) -> int:
        return int(db.execute(select(func.count(model.id)).where(model.supplier_id == supplier_id)).scalar_one())

    return {
        "items": _count(Item),
        "purchase_orders": _count(PurchaseOrder),
        "stock_ins": _count(StockIn),
    }


def delete_supplier(db: Session, supplier_id: int) -> None:
    """Suppression d'un fournisseur jamais utilisé ; sinon le désactiver (active=False)."""
    with unit_of_work(db):
        s = get_supplier(db, supplier_id)
        usage = {k: v for k, v in supplier_usage(db, supplier_id).items() if v}
        if usage:
            raise ConflictError(
                f"Supplier {s.name} is referenced and cannot be deleted; deactivate it instead",
                errors=[{"field": k, "message": f"{v} record(s) reference this supplier"} for k, v in usage.items()],
            )
        name = s.name
        db.delete(s)

    logger.info("Supplier deleted: %s (%s)", name, supplier_id)
