"""
cart.py — Cart Aggregate Store

Holds the last cart snapshot read from the cart service. The cart is owned by
the cart service and may change under us (another tab, another device), so
every mutation is delegated to the service and followed by a full re-fetch;
nothing is merged locally.
"""

from typing import Optional

from .clients import CartClient
from .errors import NotFoundError, ValidationError
from .logging_config import get_logger
from .models import CartAggregate, StoreCartGroup

log = get_logger(__name__)


class CartStore:
    def __init__(self, carts: CartClient):
        self.carts = carts
        self.cart: Optional[CartAggregate] = None

    async def refresh(self) -> CartAggregate:
        self.cart = await self.carts.get_cart()
        return self.cart

    def find_group(self, store_id: str) -> Optional[StoreCartGroup]:
        if self.cart is None:
            return None
        return self.cart.group(store_id)

    async def update_quantity(self, item_id: str, quantity: int) -> CartAggregate:
        """
        Sets an item's quantity. Anything below 1 removes the item instead.
        Raises:
            ValidationError: If the quantity exceeds the item's known stock (no network call).
        """
        if quantity < 1:
            return await self.remove_item(item_id)

        item = self.cart.find_item(item_id) if self.cart else None
        if item is not None and item.with_quantity(quantity).exceeds_stock:
            raise ValidationError("Estoque insuficiente", field_errors={"quantity": "Estoque insuficiente"})

        await self.carts.update_item_quantity(item_id, quantity)
        log.info(f"[Carrinho] Quantidade do item {item_id} atualizada para {quantity}.")
        return await self.refresh()

    async def remove_item(self, item_id: str) -> CartAggregate:
        try:
            await self.carts.remove_item(item_id)
        except NotFoundError:
            # already gone (removed elsewhere); the re-fetch below reflects that
            log.warning(f"[Carrinho] Item {item_id} já havia sido removido.")
        else:
            log.info(f"[Carrinho] Item {item_id} removido.")
        return await self.refresh()
