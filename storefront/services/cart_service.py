# storefront/services/cart_service.py
import json
from decimal import Decimal
from typing import List

from sqlalchemy.exc import IntegrityError

from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel
from storefront.domain.errors import (
    CartLineNotFound,
    ConcurrentCartModification,
    InsufficientStock,
    InvalidQuantity,
    MissingCartIdentity,
    ProductNotFound,
)
from storefront.domain.types import (
    Cart,
    CartKey,
    CartLine,
    CartSummary,
    OwnerKey,
    PricedLine,
    SessionKey,
    money,
)
from storefront.repos.unit_of_work import UnitOfWork
from storefront.services.cache_service import RedisCache
from storefront.utils.settings import GUEST_CART_TTL_SECONDS
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class DurableCarts:
    """Owner keyed carts stored in the database."""

    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    def load(self, key: OwnerKey) -> Cart | None:
        row = self.uow.carts.get_cart_by_owner(key.owner_id)
        if row is None:
            return None
        items = self.uow.carts.get_cart_items(row.id)
        return Cart(
            key=key,
            lines=[CartLine(product_id=i.product_id, quantity=i.quantity) for i in items],
            version=row.version,
        )

    def create(self, key: OwnerKey) -> Cart:
        try:
            row = self.uow.carts.create_cart(CartModel(owner_id=key.owner_id, version=1))
            self.uow.commit()
        except IntegrityError:
            # another request created it first
            self.uow.rollback()
            existing = self.load(key)
            if existing is None:
                raise
            return existing

        logger.info(f"Created cart {row.id} for owner {key.owner_id}")
        return Cart(key=key, lines=[], version=1)

    def save(self, cart: Cart) -> None:
        row = self.uow.carts.get_cart_by_owner(cart.key.owner_id)
        if row is None:
            row = self.uow.carts.create_cart(CartModel(owner_id=cart.key.owner_id, version=cart.version or 1))

        # Optimistic locking
        # e.g. update carts set version = 4 where id = 1 and version = 3
        if self.uow.carts.update_cart_version(row.id, cart.version or 1) == 0:
            self.uow.rollback()
            raise ConcurrentCartModification()

        wanted = {line.product_id: line.quantity for line in cart.lines}
        existing = {item.product_id: item for item in self.uow.carts.get_cart_items(row.id)}

        for product_id, item in existing.items():
            if product_id not in wanted:
                self.uow.carts.delete_cart_item(row.id, product_id)
            elif item.quantity != wanted[product_id]:
                item.quantity = wanted[product_id]

        for line in cart.lines:
            if line.product_id not in existing:
                self.uow.carts.add_cart_item(
                    CartItemModel(cart_id=row.id, product_id=line.product_id, quantity=line.quantity)
                )

        self.uow.commit()
        cart.version = (cart.version or 1) + 1

    def delete(self, key: OwnerKey) -> None:
        row = self.uow.carts.get_cart_by_owner(key.owner_id)
        if row is not None:
            self.uow.carts.delete_cart(row.id)
            self.uow.commit()


class GuestCarts:
    """Session keyed carts kept as a JSON snapshot with a sliding TTL."""

    def __init__(self, cache: RedisCache, ttl_seconds: int = GUEST_CART_TTL_SECONDS):
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def cache_key(key: SessionKey) -> str:
        return f"cart:session:{key.session_id}"

    def load(self, key: SessionKey) -> Cart | None:
        raw = self.cache.get(self.cache_key(key))
        if raw is None:
            return None
        data = json.loads(raw)
        return Cart(
            key=key,
            lines=[CartLine(product_id=int(l["product_id"]), quantity=int(l["quantity"])) for l in data.get("lines", [])],
        )

    def create(self, key: SessionKey) -> Cart:
        cart = Cart(key=key, lines=[])
        self.save(cart)
        return cart

    def save(self, cart: Cart) -> None:
        snapshot = {
            "lines": [{"product_id": l.product_id, "quantity": l.quantity} for l in cart.lines],
        }
        # every write pushes the expiry another TTL into the future
        self.cache.set(self.cache_key(cart.key), json.dumps(snapshot), self.ttl_seconds)

    def delete(self, key: SessionKey) -> None:
        self.cache.delete(self.cache_key(key))


class CartService:
    """
    CartStore: one interface over the durable (owner) and ephemeral (guest) carts.

    Precedence rule: when both an owner id and a session id are presented the
    owner keyed cart is used and the guest cart is left as it is. Carts are
    never merged implicitly.

    Line writes re-check ``quantity <= product.stock``. That check is advisory,
    stock is reserved for real only when the order is created.
    """

    def __init__(self, uow: UnitOfWork, cache: RedisCache, guest_ttl_seconds: int = GUEST_CART_TTL_SECONDS):
        self.uow = uow
        self.durable = DurableCarts(uow)
        self.guest = GuestCarts(cache, guest_ttl_seconds)

    @staticmethod
    def key_for(owner_id: int | None = None, session_id: str | None = None) -> CartKey:
        if owner_id is not None:
            return OwnerKey(owner_id=owner_id)
        if session_id:
            return SessionKey(session_id=session_id)
        raise MissingCartIdentity()

    def _store_for(self, key: CartKey):
        if isinstance(key, OwnerKey):
            return self.durable
        return self.guest

    #query
    def resolve(self, owner_id: int | None = None, session_id: str | None = None) -> Cart:
        return self.get(self.key_for(owner_id, session_id))

    def get(self, key: CartKey) -> Cart:
        store = self._store_for(key)
        cart = store.load(key)
        if cart is None:
            cart = store.create(key)
        return cart

    def summarize(self, cart: Cart) -> CartSummary:
        products = self.uow.products.get_products(l.product_id for l in cart.lines)
        lines: List[PricedLine] = []
        for line in cart.lines:
            product = products.get(line.product_id)
            if product is None:
                # product was removed from the catalog since it was added
                logger.warning(f"Cart line for missing product {line.product_id} skipped in summary")
                continue
            lines.append(PricedLine(line.product_id, line.quantity, money(product.price)))
        subtotal = money(sum((l.line_total for l in lines), Decimal("0.00")))
        return CartSummary(cart=cart, lines=lines, subtotal=subtotal)

    #commands
    def add_line(self, key: CartKey, product_id: int, quantity: int) -> Cart:
        if quantity <= 0:
            raise InvalidQuantity()

        cart = self.get(key)
        existing = cart.line_for(product_id)
        new_quantity = quantity + (existing.quantity if existing else 0)
        self._check_stock(product_id, new_quantity)

        if existing:
            logger.info(
                f"Product {product_id} already in cart {key}, quantity "
                f"{existing.quantity} -> {new_quantity}"
            )
            existing.quantity = new_quantity
        else:
            logger.info(f"Adding product {product_id} x{quantity} to cart {key}")
            cart.lines.append(CartLine(product_id=product_id, quantity=quantity))

        self._store_for(key).save(cart)
        return cart

    def update_line(self, key: CartKey, product_id: int, quantity: int) -> Cart:
        if quantity <= 0:
            return self.remove_line(key, product_id)

        cart = self.get(key)
        line = cart.line_for(product_id)
        if line is None:
            raise CartLineNotFound(product_id)

        self._check_stock(product_id, quantity)
        line.quantity = quantity

        self._store_for(key).save(cart)
        return cart

    def remove_line(self, key: CartKey, product_id: int) -> Cart:
        cart = self.get(key)
        line = cart.line_for(product_id)
        if line is None:
            raise CartLineNotFound(product_id)

        cart.lines.remove(line)
        logger.info(f"Removed product {product_id} from cart {key}")

        self._store_for(key).save(cart)
        return cart

    def clear(self, key: CartKey) -> None:
        self._store_for(key).delete(key)
        logger.info(f"Cleared cart {key}")

    def _check_stock(self, product_id: int, quantity: int) -> None:
        product = self.uow.products.get_product(product_id)
        if product is None:
            raise ProductNotFound(product_id)
        if quantity > product.stock:
            raise InsufficientStock(product_id, requested=quantity, available=product.stock)
