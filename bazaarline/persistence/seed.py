from __future__ import annotations

from sqlalchemy import select

from ..seed import CatalogSeed
from .db import Database
from .models import ProductRecord, StoreIntegrationRecord
from .repositories import SqlAlchemyIntegrationRepository, SqlAlchemyProductRepository


def seed_catalog_if_empty(db: Database, seed: CatalogSeed) -> None:
    with db.session() as session:
        has_products = session.execute(select(ProductRecord.id).limit(1)).first() is not None
        has_integrations = session.execute(select(StoreIntegrationRecord.id).limit(1)).first() is not None

    if not has_products:
        products = SqlAlchemyProductRepository(db)
        for product in seed.products:
            products.add(product)
    if not has_integrations:
        integrations = SqlAlchemyIntegrationRepository(db)
        for integration in seed.integrations:
            integrations.add(integration)
