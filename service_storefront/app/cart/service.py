"""
Shopping cart per user.
"""

from typing import Any, Dict, List

from shared.errors import NotFoundError
from shared.logging import get_logger

from ..persistence.mongo import MongoPersistence


class CartService:
    """Cart lines are ``{productId, quantity}``; reads flatten in product details."""

    def __init__(self, persistence: MongoPersistence):
        self.persistence = persistence
        self.logger = get_logger("storefront.cart")

    async def add_item(self, user_id: str, product_id: str, quantity: int) -> Dict[str, Any]:
        if await self.persistence.get_product(product_id) is None:
            raise NotFoundError("Product not found", {"product_id": product_id})

        cart = await self.persistence.get_cart(user_id)
        items = list(cart["items"]) if cart else []

        for item in items:
            if item["productId"] == product_id:
                item["quantity"] += quantity
                break
        else:
            items.append({"productId": product_id, "quantity": quantity})

        cart = await self.persistence.save_cart(user_id, items)
        self.logger.info("Cart item added", user_id=user_id, product_id=product_id, quantity=quantity)
        return await self._flatten(cart)

    async def get_cart(self, user_id: str) -> Dict[str, Any]:
        """Return the cart, creating an empty one and dropping lines whose product is gone."""
        cart = await self.persistence.get_cart(user_id)
        if cart is None:
            return await self.persistence.save_cart(user_id, [])
        return await self._flatten(cart, prune=True)

    async def update_item(self, user_id: str, product_id: str, quantity: int) -> Dict[str, Any]:
        cart = await self._require_cart(user_id)
        items = list(cart["items"])

        item = next((i for i in items if i["productId"] == product_id), None)
        if item is None:
            raise NotFoundError("Cart item not present!", {"product_id": product_id})
        item["quantity"] = quantity

        cart = await self.persistence.save_cart(user_id, items)
        return await self._flatten(cart)

    async def delete_item(self, user_id: str, product_id: str) -> Dict[str, Any]:
        cart = await self._require_cart(user_id)
        items = [i for i in cart["items"] if i["productId"] != product_id]
        cart = await self.persistence.save_cart(user_id, items)
        return await self._flatten(cart)

    async def clear(self, user_id: str):
        await self._require_cart(user_id)
        await self.persistence.save_cart(user_id, [])
        self.logger.info("Cart cleared", user_id=user_id)

    async def _require_cart(self, user_id: str) -> Dict[str, Any]:
        cart = await self.persistence.get_cart(user_id)
        if cart is None:
            raise NotFoundError("Cart not found!")
        return cart

    async def _flatten(self, cart: Dict[str, Any], prune: bool = False) -> Dict[str, Any]:
        items = cart.get("items", [])
        products = await self.persistence.get_products([item["productId"] for item in items])
        lookup = {p["_id"]: p for p in products}

        valid = [item for item in items if item["productId"] in lookup]
        if prune and len(valid) < len(items):
            self.logger.info("Dropping vanished products from cart", user_id=cart["userId"], dropped=len(items) - len(valid))
            cart = await self.persistence.save_cart(cart["userId"], valid)

        flattened: List[Dict[str, Any]] = []
        for item in valid:
            product = lookup[item["productId"]]
            images = product.get("images") or []
            flattened.append({
                "productId": product["_id"],
                "title": product.get("title"),
                "image": images[0] if images else "",
                "images": images,
                "price": product.get("price"),
                "salePrice": product.get("salePrice"),
                "quantity": item["quantity"],
            })
        return {**cart, "items": flattened}
