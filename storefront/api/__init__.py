# storefront/api/__init__.py
from fastapi import HTTPException

from storefront.domain.errors import CheckoutError


def http_error(e: CheckoutError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.as_detail())
