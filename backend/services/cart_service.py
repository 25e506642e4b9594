"""
Cart Service - clears a customer's cart once their order is paid.
"""
import logging

from sqlalchemy import delete

from db_models import CartItem

logger = logging.getLogger(__name__)


class CartService:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def clear_cart(self, user_id: int) -> int:
        """Remove every cart line of a user. Returns the number removed."""
        async with self._session_factory() as db:
            result = await db.execute(delete(CartItem).where(CartItem.user_id == user_id))
            await db.commit()
        logger.info(f"🛒 Cleared {result.rowcount} cart item(s) for user {user_id}")
        return result.rowcount
