import os

# must be set before storefront.utils.settings is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENABLE_FAKE_PAYMENTS", "true")

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.data.database import Base
from storefront.data.models import CouponModel, ProductModel
from storefront.repos.unit_of_work import UnitOfWork
from storefront.services.cache_service import RedisCache
from storefront.services.cart_service import CartService
from storefront.services.coupon_service import CouponService
from storefront.services.notification_service import NotificationService
from storefront.services.order_service import OrderService
from storefront.services.payment_provider import BankTransferProvider, CashOnDeliveryProvider, FakePaymentProvider
from storefront.services.payment_service import PaymentService
from storefront.services.stock_ledger import StockLedger


class InMemoryCache(RedisCache):
    """Dict backed stand-in for redis; remembers the TTL of every write."""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, ttl_seconds):
        self.data[key] = value
        self.ttls[key] = ttl_seconds

    def delete(self, key):
        self.data.pop(key, None)
        self.ttls.pop(key, None)

    def ping(self):
        return True


class RecordingNotifier(NotificationService):
    def __init__(self):
        self.events = []

    def notify(self, event_type, payload):
        self.events.append((event_type, payload))

    def of_type(self, event_type):
        return [p for t, p in self.events if t == event_type]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def uow(db):
    return UnitOfWork(db)


@pytest.fixture
def cache():
    return InMemoryCache()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def cart_service(uow, cache):
    return CartService(uow=uow, cache=cache)


@pytest.fixture
def coupon_service(uow):
    return CouponService(uow)


@pytest.fixture
def order_service(uow, cart_service, coupon_service, notifier):
    return OrderService(
        uow=uow,
        cart_service=cart_service,
        coupon_service=coupon_service,
        stock_ledger=StockLedger(uow),
        notifier=notifier,
    )


@pytest.fixture
def fake_provider():
    return FakePaymentProvider("test-secret")


@pytest.fixture
def payment_service(uow, fake_provider, notifier):
    providers = {
        "fake": fake_provider,
        "cod": CashOnDeliveryProvider(),
        "bank_transfer": BankTransferProvider(),
    }
    return PaymentService(uow=uow, providers=providers, notifier=notifier)


def add_product(db, product_id, price, stock, category_id=None):
    product = ProductModel(
        id=product_id,
        name=f"Product {product_id}",
        price=Decimal(price),
        stock=stock,
        category_id=category_id,
    )
    db.add(product)
    db.commit()
    return product


def add_coupon(db, code, type="PERCENTAGE", discount_value="10", **fields):
    coupon = CouponModel(
        code=code,
        type=type,
        status=fields.pop("status", "ACTIVE"),
        discount_value=Decimal(discount_value),
        usage_count=fields.pop("usage_count", 0),
        **fields,
    )
    db.add(coupon)
    db.commit()
    return coupon


def stock_of(db, product_id):
    db.expire_all()
    return db.get(ProductModel, product_id).stock


def days(n):
    return datetime.now(timezone.utc) + timedelta(days=n)
