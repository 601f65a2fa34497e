from __future__ import annotations

import logging

from sqlalchemy import select

from backend.app.core.logging import configure_logging
from backend.app.db.models.models_v1 import Category, Item, Supplier
from backend.app.db.session import SessionLocal

logger = logging.getLogger(__name__)

CATEGORIES = ["Consumables", "Anesthetics", "Restorative", "Instruments"]

ITEMS = [
    # (code, name, category, uom, reorder_level)
    ("GLV-M", "Nitrile gloves (M)", "Consumables", "box", 10),
    ("LIDO-2", "Lidocaine 2% cartridge", "Anesthetics", "cartridge", 50),
    ("COMP-A2", "Composite resin A2", "Restorative", "syringe", 5),
    ("MIRR-5", "Mouth mirror #5", "Instruments", "pcs", 20),
]


def run_seed():
    configure_logging()
    db = SessionLocal()
    try:
        # 1) Catégories
        cats = {}
        for name in CATEGORIES:
            cat = db.scalar(select(Category).where(Category.name == name))
            if not cat:
                cat = Category(name=name)
                db.add(cat)
                db.flush()
            cats[name] = cat

        # 2) Fournisseur par défaut
        supplier = db.scalar(select(Supplier).where(Supplier.name == "Dental Supply Co"))
        if not supplier:
            supplier = Supplier(name="Dental Supply Co", contact_person="Sales desk", active=True)
            db.add(supplier)
            db.flush()

        # 3) Items (aucun stock : les lots naissent à la réception)
        for code, name, cat_name, uom, reorder in ITEMS:
            if db.scalar(select(Item).where(Item.code == code)):
                continue
            db.add(
                Item(
                    code=code,
                    name=name,
                    category_id=cats[cat_name].id,
                    unit_of_measure=uom,
                    reorder_level=reorder,
                    supplier_id=supplier.id,
                    active=True,
                )
            )

        db.commit()
        logger.info("Seed OK: %s categories, supplier=%s, %s items", len(cats), supplier.name, len(ITEMS))
    finally:
        db.close()


if __name__ == "__main__":
    run_seed()
