"""
Cart engine

Each user has at most one active cart. Every mutation re-reads the cart,
changes the in-memory copy, recomputes totals from the full item list and
writes the whole document back. The write only succeeds if the stored
version is still the one that was read; otherwise the mutation is replayed
on a fresh copy.

Stock checks are point-in-time. Nothing is reserved, so two carts can both
hold the last unit of a product.
"""

import logging
from typing import Callable, Iterable, Optional, Tuple

from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from context import AppContext
from database import parse_object_id
from errors import InsufficientStock, Internal, InvalidInput, NotFound
from schemas import Cart, CartItem

logger = logging.getLogger(__name__)


def compute_totals(items: Iterable[CartItem]) -> Tuple[float, int]:
    items = list(items)
    total_amount = round(sum(item.price_at_time * item.quantity for item in items), 2)
    total_items = sum(item.quantity for item in items)
    return total_amount, total_items


class CartEngine:
    def __init__(self, context: AppContext):
        self.db = context.db
        self.clock = context.clock
        self.max_retries = max(1, context.settings.cart_max_retries)

    @property
    def carts(self):
        return self.db["cart"]

    # -----------------------------
    # Reads
    # -----------------------------

    def find_active_cart(self, user_id: str) -> Optional[Cart]:
        doc = self.carts.find_one({"user_id": user_id, "status": "active"})
        return Cart.from_document(doc) if doc else None

    def get_or_create_cart(self, user_id: str) -> Cart:
        cart = self.find_active_cart(user_id)
        if cart:
            return cart

        now = self.clock()
        cart = Cart(user_id=user_id, created_at=now, updated_at=now)
        try:
            result = self.carts.insert_one(cart.to_document())
        except DuplicateKeyError:
            # Another request created the cart first
            existing = self.find_active_cart(user_id)
            if existing is None:
                raise
            return existing
        cart.id = str(result.inserted_id)
        logger.info("Created cart %s for user %s", cart.id, user_id)
        return cart

    # -----------------------------
    # Mutations
    # -----------------------------

    def add_item(self, user_id: str, product_id: str, quantity: int) -> Cart:
        if quantity is None or quantity <= 0:
            raise InvalidInput("Quantity must be a positive integer")
        product_oid = self._parse_product_id(product_id)

        def mutate(cart: Cart):
            product = self._get_product(product_oid)
            stock = int(product.get("stock") or 0)
            now = self.clock()
            line = self._find_line(cart, str(product_oid))
            if line:
                if stock < line.quantity + quantity:
                    raise InsufficientStock(max(stock - line.quantity, 0))
                line.quantity += quantity
                line.added_at = now
            else:
                if stock < quantity:
                    raise InsufficientStock(stock)
                cart.items.append(CartItem(
                    product_id=str(product_oid),
                    product_name=product.get("name", ""),
                    product_image=product.get("image_url") or "",
                    quantity=quantity,
                    price_at_time=float(product.get("price", 0)),
                    added_at=now,
                ))

        return self._mutate(user_id, mutate, create=True)

    def update_item(self, user_id: str, product_id: str, quantity: int) -> Cart:
        if quantity is None or quantity < 0:
            raise InvalidInput("Quantity cannot be negative")
        product_oid = self._parse_product_id(product_id)

        def mutate(cart: Cart):
            line = self._find_line(cart, str(product_oid))
            if line is None:
                raise NotFound("Item not found in cart")
            if quantity == 0:
                cart.items.remove(line)
                return
            product = self._get_product(product_oid)
            stock = int(product.get("stock") or 0)
            if stock < quantity:
                raise InsufficientStock(stock, absolute=True)
            line.quantity = quantity
            line.added_at = self.clock()

        return self._mutate(user_id, mutate)

    def remove_item(self, user_id: str, product_id: str) -> Cart:
        product_oid = self._parse_product_id(product_id)

        def mutate(cart: Cart):
            line = self._find_line(cart, str(product_oid))
            if line is None:
                raise NotFound("Item not found in cart")
            cart.items.remove(line)

        return self._mutate(user_id, mutate)

    def clear_cart(self, user_id: str) -> Cart:
        def mutate(cart: Cart):
            cart.items = []

        return self._mutate(user_id, mutate)

    # -----------------------------
    # Internals
    # -----------------------------

    def _mutate(self, user_id: str, mutate: Callable[[Cart], None], create: bool = False) -> Cart:
        for attempt in range(1, self.max_retries + 1):
            cart = self.get_or_create_cart(user_id) if create else self.find_active_cart(user_id)
            if cart is None:
                raise NotFound("Cart not found")

            mutate(cart)
            cart.total_amount, cart.total_items = compute_totals(cart.items)
            cart.updated_at = self.clock()

            if self._replace(cart):
                return cart
            logger.warning("Cart %s for user %s changed concurrently, retrying (%d/%d)",
                           cart.id, user_id, attempt, self.max_retries)

        raise Internal("Cart was modified concurrently, please try again",
                       error=f"gave up after {self.max_retries} attempts")

    def _replace(self, cart: Cart) -> bool:
        expected = cart.version
        cart.version = expected + 1
        query = {"_id": ObjectId(cart.id), "status": "active"}
        if expected == 0:
            query["$or"] = [{"version": 0}, {"version": {"$exists": False}}]
        else:
            query["version"] = expected
        result = self.carts.replace_one(query, cart.to_document())
        if result.matched_count == 1:
            return True
        cart.version = expected
        return False

    def _parse_product_id(self, product_id: str) -> ObjectId:
        oid = parse_object_id(product_id)
        if oid is None:
            raise InvalidInput("Invalid product ID format")
        return oid

    def _get_product(self, product_oid: ObjectId) -> dict:
        product = self.db["product"].find_one({"_id": product_oid})
        if not product:
            raise NotFound("Product not found")
        return product

    @staticmethod
    def _find_line(cart: Cart, product_id: str) -> Optional[CartItem]:
        return next((item for item in cart.items if item.product_id == product_id), None)
