"""
Reference data Pydantic schemas (agencies, inspectors, service types,
area bands, price and payout tables).
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field

from backend.models.schema import PaymentMethod


class AgencyCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    external_name: str = Field(..., min_length=1, max_length=255, description="Name in the scheduling system")
    tax_id: Optional[str] = Field(None, max_length=32, description="CNPJ")
    email: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    city: Optional[str] = None
    active: bool = True
    payment_day: int = Field(12, ge=1, le=28, description="Due day in the following month")
    payment_method: PaymentMethod = PaymentMethod.BOLETO


class AgencyUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    external_name: Optional[str] = Field(None, min_length=1, max_length=255)
    tax_id: Optional[str] = Field(None, max_length=32)
    email: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    city: Optional[str] = None
    active: Optional[bool] = None
    payment_day: Optional[int] = Field(None, ge=1, le=28)
    payment_method: Optional[PaymentMethod] = None


class AgencyResponse(BaseModel):
    id: int
    name: str
    external_name: str
    tax_id: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    city: Optional[str] = None
    active: bool
    payment_day: int
    payment_method: PaymentMethod
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class InspectorCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    external_name: str = Field(..., min_length=1, max_length=255, description="Name in the scheduling system")
    tax_id: Optional[str] = Field(None, max_length=32, description="CPF")
    email: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    city: Optional[str] = None
    pix_key: Optional[str] = None
    active: bool = True


class InspectorUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    external_name: Optional[str] = Field(None, min_length=1, max_length=255)
    tax_id: Optional[str] = Field(None, max_length=32)
    email: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    city: Optional[str] = None
    pix_key: Optional[str] = None
    active: Optional[bool] = None


class InspectorResponse(BaseModel):
    id: int
    name: str
    external_name: str
    tax_id: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    city: Optional[str] = None
    pix_key: Optional[str] = None
    active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ServiceTypeCreateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    active: bool = True


class ServiceTypeUpdateRequest(BaseModel):
    code: Optional[str] = Field(None, min_length=1, max_length=20)
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    active: Optional[bool] = None


class ServiceTypeResponse(BaseModel):
    id: int
    code: str
    name: str
    description: Optional[str] = None
    active: bool

    class Config:
        from_attributes = True


class AreaBandCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    min_area: Decimal = Field(..., ge=0)
    max_area: Decimal = Field(..., ge=0)
    multiplier: Decimal = Field(Decimal('1'), gt=0)
    position: int = 0


class AreaBandUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    min_area: Optional[Decimal] = Field(None, ge=0)
    max_area: Optional[Decimal] = Field(None, ge=0)
    multiplier: Optional[Decimal] = Field(None, gt=0)
    position: Optional[int] = None


class AreaBandResponse(BaseModel):
    id: int
    name: str
    min_area: Decimal
    max_area: Decimal
    multiplier: Decimal
    position: int

    class Config:
        from_attributes = True


class RateFields(BaseModel):
    """Amount fields shared by price and payout rows."""

    service_type_id: int
    area_band_id: Optional[int] = Field(None, description="Omit for the bandless default row")
    base_amount: Decimal = Field(..., ge=0)
    furnished_surcharge: Optional[Decimal] = Field(None, ge=0)
    semi_furnished_surcharge: Optional[Decimal] = Field(None, ge=0)
    active: bool = True


class RateUpdateRequest(BaseModel):
    service_type_id: Optional[int] = None
    area_band_id: Optional[int] = None
    base_amount: Optional[Decimal] = Field(None, ge=0)
    furnished_surcharge: Optional[Decimal] = Field(None, ge=0)
    semi_furnished_surcharge: Optional[Decimal] = Field(None, ge=0)
    active: Optional[bool] = None


class PriceTableCreateRequest(RateFields):
    agency_id: int

    class Config:
        json_schema_extra = {
            "example": {
                "agency_id": 1,
                "service_type_id": 1,
                "area_band_id": None,
                "base_amount": "150.00",
                "furnished_surcharge": "30.00",
                "semi_furnished_surcharge": "15.00"
            }
        }


class PriceTableResponse(RateFields):
    id: int
    agency_id: int

    class Config:
        from_attributes = True


class PayoutTableCreateRequest(RateFields):
    inspector_id: int


class PayoutTableResponse(RateFields):
    id: int
    inspector_id: int

    class Config:
        from_attributes = True
