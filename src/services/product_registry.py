"""Product data source used by the embedding pipeline.

The catalog itself lives elsewhere; the pipeline only needs to read products,
write back their canonical document, and resolve category, shop and attribute
definition names. ``ProductRegistry`` is an in-memory implementation fed by the
registration routes.

Reads are tenant-scoped unless the caller passes ``platform_scope=True``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from threading import RLock
from typing import Annotated

from fastapi import Depends

from src.models.document import CanonicalProductDocument
from src.models.product import Category, Product, ProductAttributeDefinition, Shop

logger = logging.getLogger(__name__)

ProductPredicate = Callable[[Product], bool]


class ProductRepository(ABC):
    """Read/write access to product records."""

    @abstractmethod
    async def find_by_id(
        self,
        product_id: str,
        tenant_id: str | None = None,
        *,
        platform_scope: bool = False,
    ) -> Product | None:
        """Return the product, or None when missing or outside the tenant scope."""

    @abstractmethod
    async def get_list(
        self,
        predicate: ProductPredicate | None = None,
        tenant_id: str | None = None,
        *,
        platform_scope: bool = False,
    ) -> list[Product]:
        """Return products matching the predicate."""

    @abstractmethod
    async def update(self, product: Product) -> Product:
        """Persist changes made to an existing product."""

    @abstractmethod
    async def mark_embedding_generated(
        self,
        product_id: str,
        revision: int,
        document: CanonicalProductDocument | None = None,
    ) -> bool:
        """Flag the stored product as embedded.

        ``document`` is cached only while the stored record is still at
        ``revision``. Returns False when the product no longer exists.
        """


class CatalogLookup(ABC):
    """Lookups that enrich canonical documents."""

    @abstractmethod
    async def find_category(
        self, category_id: str, *, platform_scope: bool = False
    ) -> Category | None: ...

    @abstractmethod
    async def find_shop(self, shop_id: str, *, platform_scope: bool = False) -> Shop | None: ...

    @abstractmethod
    async def list_attribute_definitions(
        self, shop_id: str, *, platform_scope: bool = False
    ) -> list[ProductAttributeDefinition]: ...


def _in_scope(tenant_id: str | None, record_tenant: str | None, platform_scope: bool) -> bool:
    return platform_scope or tenant_id == record_tenant


class ProductRegistry(ProductRepository, CatalogLookup):
    """Naive in-memory catalog for local runs and tests."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._products: dict[str, Product] = {}
        self._categories: dict[str, Category] = {}
        self._shops: dict[str, Shop] = {}
        self._attributes: dict[str, ProductAttributeDefinition] = {}

    def register(self, product: Product) -> tuple[Product, bool]:
        """Store a product, returning it and whether it replaced an existing one.

        A re-registration always drops the cached canonical document so the
        next embedding run rebuilds it from the new data.
        """
        with self._lock:
            existed = product.id in self._products
            product.revision = 1
            if existed:
                previous = self._products[product.id]
                product.embedding_generated = previous.embedding_generated
                product.revision = previous.revision + 1
            product.canonical_document = None
            product.canonical_document_version = 0
            self._products[product.id] = product

        logger.info(
            "Registered product %s for shop %s", product.id, product.shop_id
        )
        logger.debug("Product payload: %s", product.model_dump_json())
        return product, existed

    def remove(self, product_id: str) -> Product | None:
        with self._lock:
            return self._products.pop(product_id, None)

    def register_category(self, category: Category) -> Category:
        with self._lock:
            self._categories[category.id] = category
        return category

    def register_shop(self, shop: Shop) -> Shop:
        with self._lock:
            self._shops[shop.id] = shop
        return shop

    def register_attribute(
        self, definition: ProductAttributeDefinition
    ) -> ProductAttributeDefinition:
        with self._lock:
            self._attributes[definition.id] = definition
        return definition

    async def find_by_id(
        self,
        product_id: str,
        tenant_id: str | None = None,
        *,
        platform_scope: bool = False,
    ) -> Product | None:
        with self._lock:
            product = self._products.get(product_id)
        if product is None or not _in_scope(tenant_id, product.tenant_id, platform_scope):
            return None
        return product.model_copy(deep=True)

    async def get_list(
        self,
        predicate: ProductPredicate | None = None,
        tenant_id: str | None = None,
        *,
        platform_scope: bool = False,
    ) -> list[Product]:
        with self._lock:
            products = list(self._products.values())
        return [
            product.model_copy(deep=True)
            for product in products
            if _in_scope(tenant_id, product.tenant_id, platform_scope)
            and (predicate is None or predicate(product))
        ]

    async def update(self, product: Product) -> Product:
        with self._lock:
            current = self._products.get(product.id)
            if current is None:
                raise KeyError(f"Product {product.id} is not registered")
            product.revision = current.revision + 1
            self._products[product.id] = product.model_copy(deep=True)
        return product

    async def mark_embedding_generated(
        self,
        product_id: str,
        revision: int,
        document: CanonicalProductDocument | None = None,
    ) -> bool:
        with self._lock:
            current = self._products.get(product_id)
            if current is None:
                return False
            if document is not None:
                if current.revision == revision:
                    current.update_canonical_document(document)
                else:
                    logger.info(
                        "Product %s changed during embedding, not caching its document",
                        product_id,
                    )
            current.mark_embedding_generated()
        return True

    async def find_category(
        self, category_id: str, *, platform_scope: bool = False
    ) -> Category | None:
        with self._lock:
            category = self._categories.get(category_id)
        if category is None or not _in_scope(None, category.tenant_id, platform_scope):
            return None
        return category

    async def find_shop(self, shop_id: str, *, platform_scope: bool = False) -> Shop | None:
        with self._lock:
            shop = self._shops.get(shop_id)
        if shop is None or not _in_scope(None, shop.tenant_id, platform_scope):
            return None
        return shop

    async def list_attribute_definitions(
        self, shop_id: str, *, platform_scope: bool = False
    ) -> list[ProductAttributeDefinition]:
        with self._lock:
            definitions = list(self._attributes.values())
        return [
            definition
            for definition in definitions
            if definition.shop_id == shop_id
            and _in_scope(None, definition.tenant_id, platform_scope)
        ]


_registry = ProductRegistry()


def get_registry() -> ProductRegistry:
    """FastAPI dependency factory."""

    return _registry


RegistryDependency = Annotated[ProductRegistry, Depends(get_registry)]
