"""Routes feeding catalog data and product lifecycle changes into the service."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, status

from src.models.embedding import ProductChangeEvent, ProductChangeType
from src.models.product import (
    AttributeDefinitionPayload,
    Category,
    CategoryPayload,
    Product,
    ProductAttributeDefinition,
    ProductPayload,
    RegisteredProduct,
    Shop,
    ShopPayload,
)
from src.services.pipeline.dispatcher import ChangeDispatcher, DispatcherDependency
from src.services.product_registry import ProductRegistry, RegistryDependency

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["products"])


def _change_event(product: Product, change_type: ProductChangeType) -> ProductChangeEvent:
    return ProductChangeEvent(
        change_type=change_type,
        product_id=product.id,
        shop_id=product.shop_id,
        tenant_id=product.tenant_id,
        product_name=product.name,
        is_eligible_for_embedding=product.is_eligible_for_embedding,
        canonical_document_version=product.canonical_document_version,
    )


async def _notify(dispatcher: ChangeDispatcher, events: list[ProductChangeEvent]) -> None:
    """Dispatch change events; registration never fails on queue errors."""
    try:
        queued = await dispatcher.dispatch_many(events)
        logger.info("Dispatched %d product change events", queued)
    except Exception as exc:
        logger.warning(
            "Failed to dispatch change events for %s, but registration continues: %s",
            [event.product_id for event in events],
            exc,
        )


def _register(registry: ProductRegistry, payload: ProductPayload) -> tuple[Product, ProductChangeEvent]:
    product, existed = registry.register(payload.to_product())
    change_type = ProductChangeType.UPDATED if existed else ProductChangeType.CREATED
    return product, _change_event(product, change_type)


def _acknowledge(product: Product) -> RegisteredProduct:
    return RegisteredProduct(
        product_id=product.id,
        shop_id=product.shop_id,
        is_eligible_for_embedding=product.is_eligible_for_embedding,
    )


@router.post(
    "/register",
    response_model=RegisteredProduct,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Register or update a product",
)
async def register_product(
    payload: ProductPayload,
    registry: RegistryDependency,
    dispatcher: DispatcherDependency,
) -> RegisteredProduct:
    logger.info(
        "Catalog registration received for product %s (shop=%s)",
        payload.product_id,
        payload.shop_id,
    )
    product, event = _register(registry, payload)
    await _notify(dispatcher, [event])
    return _acknowledge(product)


@router.post(
    "/register/batch",
    response_model=list[RegisteredProduct],
    status_code=status.HTTP_202_ACCEPTED,
    summary="Register or update multiple products",
)
async def register_products_batch(
    payload: list[ProductPayload],
    registry: RegistryDependency,
    dispatcher: DispatcherDependency,
) -> list[RegisteredProduct]:
    registered = [_register(registry, item) for item in payload]
    await _notify(dispatcher, [event for _, event in registered])
    return [_acknowledge(product) for product, _ in registered]


async def _set_published(
    product_id: str,
    published: bool,
    registry: ProductRegistry,
    dispatcher: ChangeDispatcher,
) -> RegisteredProduct:
    product = await registry.find_by_id(product_id, platform_scope=True)
    if product is None:
        raise HTTPException(status_code=404, detail="Unknown product id")

    product.is_published = published
    await registry.update(product)

    change_type = ProductChangeType.PUBLISHED if published else ProductChangeType.UNPUBLISHED
    await _notify(dispatcher, [_change_event(product, change_type)])
    return _acknowledge(product)


@router.post(
    "/{product_id}/publish",
    response_model=RegisteredProduct,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Publish a product and activate its embeddings",
)
async def publish_product(
    product_id: str,
    registry: RegistryDependency,
    dispatcher: DispatcherDependency,
) -> RegisteredProduct:
    return await _set_published(product_id, True, registry, dispatcher)


@router.post(
    "/{product_id}/unpublish",
    response_model=RegisteredProduct,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Unpublish a product and deactivate its embeddings",
)
async def unpublish_product(
    product_id: str,
    registry: RegistryDependency,
    dispatcher: DispatcherDependency,
) -> RegisteredProduct:
    return await _set_published(product_id, False, registry, dispatcher)


@router.delete(
    "/{product_id}",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Remove a product and its embeddings",
)
async def delete_product(
    product_id: str,
    registry: RegistryDependency,
    dispatcher: DispatcherDependency,
) -> dict[str, str]:
    product = registry.remove(product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="Unknown product id")

    await _notify(dispatcher, [_change_event(product, ProductChangeType.DELETED)])
    return {"status": "accepted", "product_id": product_id}


@router.post(
    "/categories",
    response_model=Category,
    status_code=status.HTTP_201_CREATED,
    summary="Register a category used to enrich documents",
)
async def register_category(payload: CategoryPayload, registry: RegistryDependency) -> Category:
    return registry.register_category(Category(**payload.model_dump()))


@router.post(
    "/shops",
    response_model=Shop,
    status_code=status.HTTP_201_CREATED,
    summary="Register a shop used to enrich documents",
)
async def register_shop(payload: ShopPayload, registry: RegistryDependency) -> Shop:
    return registry.register_shop(Shop(**payload.model_dump()))


@router.post(
    "/attributes",
    response_model=ProductAttributeDefinition,
    status_code=status.HTTP_201_CREATED,
    summary="Register a shop attribute definition",
)
async def register_attribute(
    payload: AttributeDefinitionPayload, registry: RegistryDependency
) -> ProductAttributeDefinition:
    return registry.register_attribute(payload.to_definition())
