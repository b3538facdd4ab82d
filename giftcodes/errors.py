"""
Domain error taxonomy.

Stores, the fulfillment coordinator and the gateway raise only these. The
HTTP layer renders them as ``{"error": message, **context}`` with the
class' status code.
"""
from __future__ import annotations
from typing import Any, Dict, Optional


class GiftCodeError(Exception):
    status_code = 500

    def __init__(self, message: str,
                 context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, **self.context}


class ValidationError(GiftCodeError):
    status_code = 400


class NotFoundError(GiftCodeError):
    status_code = 404


class Forbidden(GiftCodeError):
    status_code = 403


class Conflict(GiftCodeError):
    status_code = 409

    def __init__(self, message: str, current_status: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None) -> None:
        ctx = dict(context or {})
        if current_status is not None:
            ctx["current_status"] = current_status
        super().__init__(message, ctx)
        self.current_status = current_status


class OutOfStock(GiftCodeError):
    status_code = 409

    def __init__(self, message: str, product_id: Optional[str] = None,
                 needs_refund: bool = False) -> None:
        ctx: Dict[str, Any] = {}
        if product_id is not None:
            ctx["product_id"] = product_id
        if needs_refund:
            ctx["needs_refund"] = True
        super().__init__(message, ctx)
        self.product_id = product_id
        self.needs_refund = needs_refund


class ExternalServiceError(GiftCodeError):
    status_code = 502


class UploadError(ExternalServiceError):
    pass


class InternalError(GiftCodeError):
    status_code = 500
