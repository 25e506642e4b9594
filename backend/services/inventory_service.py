"""
Inventory Service - catalog lookups and stock decrements.

Stock is never clamped: a decrement that would drive stock negative raises
InsufficientStockError and leaves the row untouched.
"""
import logging
from typing import Iterable

from sqlalchemy import select, update

from db_models import Product
from domain.errors import InsufficientStockError, NotFoundError

logger = logging.getLogger(__name__)


class InventoryService:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def get_products(self, product_ids: Iterable[int]) -> dict[int, Product]:
        ids = set(product_ids)
        if not ids:
            return {}
        async with self._session_factory() as db:
            result = await db.execute(select(Product).where(Product.id.in_(ids)))
            return {p.id: p for p in result.scalars().all()}

    async def decrement_stock(self, product_id: int, quantity: int) -> None:
        """
        Decrement stock with a conditional UPDATE (stock >= quantity).

        Raises:
            NotFoundError: unknown product.
            InsufficientStockError: not enough stock left.
        """
        async with self._session_factory() as db:
            product = await db.get(Product, product_id)
            if product is None:
                raise NotFoundError("Product", str(product_id))
            if product.stock_quantity is None:
                return  # unlimited

            result = await db.execute(
                update(Product)
                .where(Product.id == product_id, Product.stock_quantity >= quantity)
                .values(stock_quantity=Product.stock_quantity - quantity)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await db.rollback()
                await db.refresh(product)
                raise InsufficientStockError(product_id, quantity, product.stock_quantity or 0)
            await db.commit()

        logger.info(f"Stock for product {product_id} decremented by {quantity}")
