# storefront/api/deps.py
from functools import lru_cache
from typing import Dict

from fastapi import Depends
from sqlalchemy.orm import Session

from storefront.data.database import get_db
from storefront.repos.unit_of_work import UnitOfWork
from storefront.services.cache_service import RedisCache
from storefront.services.notification_service import NotificationService
from storefront.services.payment_provider import PaymentProvider, build_providers


def get_uow(db: Session = Depends(get_db)) -> UnitOfWork:
    return UnitOfWork(db)


@lru_cache
def get_cache() -> RedisCache:
    return RedisCache()


@lru_cache
def get_notifier() -> NotificationService:
    return NotificationService()


@lru_cache
def get_payment_providers() -> Dict[str, PaymentProvider]:
    return build_providers()
