from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator


class LoginIn(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class JumboRollIn(BaseModel):
    barcode: str = Field(min_length=1)
    material_type: str = Field(min_length=1)
    basis_weight: Decimal = Field(gt=0)
    width: Decimal = Field(gt=0)
    length: Decimal = Field(gt=0)
    weight: Decimal | None = Field(default=None, gt=0)
    container_no: str | None = None
    arrival_date: date | None = None
    note: str | None = None


class JumboRollUpdateIn(BaseModel):
    material_type: str | None = None
    basis_weight: Decimal | None = Field(default=None, gt=0)
    width: Decimal | None = Field(default=None, gt=0)
    length: Decimal | None = Field(default=None, gt=0)
    weight: Decimal | None = Field(default=None, gt=0)
    container_no: str | None = None
    arrival_date: date | None = None
    note: str | None = None


class BulkDeleteIn(BaseModel):
    ids: list[int] = Field(min_length=1)


class DivideIn(BaseModel):
    length: Decimal = Field(gt=0)
    count: int = Field(ge=1, le=200)
    note: str | None = None


class DividedRollUpdateIn(BaseModel):
    length: Decimal = Field(gt=0)
    width: Decimal | None = Field(default=None, gt=0)
    note: str | None = None


class RemainingLengthIn(BaseModel):
    remaining_length: Decimal = Field(ge=0)


class ScanIn(BaseModel):
    barcode: str = Field(min_length=1)
    order_item_id: int | None = None

    @field_validator('barcode')
    @classmethod
    def _strip_barcode(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError('Barcode is required')
        return cleaned


class ScanClaimIn(BaseModel):
    order_item_id: int
    barcode: str


class ItemFlagIn(BaseModel):
    id: int
    scanned_count: int | None = None
    scanned: bool | None = None


class FinalizeIn(BaseModel):
    notes: str | None = None
    scanned_items: list[ScanClaimIn] | None = None
    order_items: list[ItemFlagIn] | None = None
