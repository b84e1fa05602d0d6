"""Error taxonomy for the fulfillment engine.

FulfillmentError
├── ValidationError            missing or malformed identifiers (also a ValueError)
├── NotFoundError              order, unit or line item absent
├── ConflictError              business-rule conflict
│   ├── OrderAlreadyShipped    scanning against an order with a completed shipment
│   ├── LineItemFull           new barcode for a line item that is already fully scanned
│   ├── UnitAlreadySold        unit consumed for a different order
│   └── AlreadyShipped         finalize called again for a completed shipment
└── InsufficientInventoryError consumption would drive remaining length negative
"""

from __future__ import annotations


class FulfillmentError(Exception):
    code = 'FULFILLMENT_ERROR'
    status_code = 400

    def __init__(self, message: str, **context) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        payload = {'error': self.code, 'detail': self.message}
        if self.context:
            payload['context'] = self.context
        return payload


class ValidationError(FulfillmentError, ValueError):
    code = 'VALIDATION_ERROR'
    status_code = 400


class NotFoundError(FulfillmentError):
    code = 'NOT_FOUND'
    status_code = 404


class ConflictError(FulfillmentError):
    code = 'CONFLICT'
    status_code = 409


class OrderAlreadyShipped(ConflictError):
    code = 'ORDER_ALREADY_SHIPPED'


class LineItemFull(ConflictError):
    code = 'LINE_ITEM_FULL'


class UnitAlreadySold(ConflictError):
    code = 'UNIT_ALREADY_SOLD'


class AlreadyShipped(ConflictError):
    code = 'ALREADY_SHIPPED'


class InsufficientInventoryError(FulfillmentError):
    code = 'INSUFFICIENT_INVENTORY'
    status_code = 409
