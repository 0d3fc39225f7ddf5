from typing import Dict, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rental_engine.errors import ProductNotFoundError
from rental_engine.models import Product
from rental_engine.protocols import ProductInfo


def _to_info(product: Product) -> ProductInfo:
    return ProductInfo(
        id=product.id,
        vendor_id=product.vendor_id,
        stock=product.stock,
        price=product.price,
        duration_unit=product.duration_unit,
    )


class SqlCatalog:
    """Catalog reads over the products table shared with the catalog service."""

    async def get_product(self, session: AsyncSession, product_id: str) -> ProductInfo:
        product = await session.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(f"Product not found: {product_id}")
        return _to_info(product)

    async def lock_products(self, session: AsyncSession, product_ids: Iterable[str]) -> Dict[str, ProductInfo]:
        ids = sorted(set(product_ids))
        # Lock in id order so two confirms never wait on each other crosswise
        result = await session.execute(
            select(Product).where(Product.id.in_(ids)).order_by(Product.id).with_for_update()
        )
        products = {p.id: _to_info(p) for p in result.scalars().all()}
        missing = [pid for pid in ids if pid not in products]
        if missing:
            raise ProductNotFoundError(f"Product not found: {', '.join(missing)}")
        return products
