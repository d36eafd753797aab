"""
Reference data management: agencies, inspectors, service types, area bands,
price tables and payout tables, plus seeding of the default catalog.
"""

import logging
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.models.schema import (
    Agency, AreaBand, Inspector, PayoutTable, PriceTable, ServiceType
)
from services.exceptions import BillingError, ConflictError, ReferenceNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_TYPES = (
    ('1.0', 'VISTORIA DE ENTRADA', 'Vistoria realizada na entrada do inquilino'),
    ('2.0', 'VISTORIA DE SAÍDA', 'Vistoria realizada na saída do inquilino'),
    ('3.0', 'VISTORIA DE CONFERÊNCIA', 'Vistoria de conferência de imóvel'),
    ('4.0', 'VISTORIA CAUTELAR', 'Vistoria cautelar'),
    ('5.0', 'LAUDO TÉCNICO', 'Elaboração de laudo técnico'),
)

# (name, min_area, max_area, multiplier); position follows list order
DEFAULT_AREA_BANDS = (
    ('Até 150 m²', '0', '150', '1.0'),
    ('151 até 225 m²', '151', '225', '1.5'),
    ('226 até 300 m²', '226', '300', '2.0'),
    ('301 até 375 m²', '301', '375', '2.5'),
    ('376 até 450 m²', '376', '450', '3.0'),
    ('451 até 525 m²', '451', '525', '3.5'),
    ('526 até 600 m²', '526', '600', '4.0'),
    ('Acima de 600 m²', '601', '999999', '5.0'),
)

AGENCY_FIELDS = ('name', 'external_name', 'tax_id', 'email', 'phone', 'whatsapp', 'city',
                 'active', 'payment_day', 'payment_method')
INSPECTOR_FIELDS = ('name', 'external_name', 'tax_id', 'email', 'phone', 'whatsapp', 'city',
                    'pix_key', 'active')
SERVICE_TYPE_FIELDS = ('code', 'name', 'description', 'active')
AREA_BAND_FIELDS = ('name', 'min_area', 'max_area', 'multiplier', 'position')
RATE_FIELDS = ('service_type_id', 'area_band_id', 'base_amount', 'furnished_surcharge',
               'semi_furnished_surcharge', 'active')


def _apply(entity, data: Dict[str, Any], fields) -> None:
    for field_name in fields:
        if field_name in data:
            value = data[field_name]
            if isinstance(value, Enum):
                value = value.value
            setattr(entity, field_name, value)


class ReferenceService:
    """CRUD for the reference tables used by import and pricing."""

    def __init__(self, db_session: Session):
        self.session = db_session

    def _get(self, model, entity_id: int, label: str):
        entity = self.session.get(model, entity_id)
        if entity is None:
            raise ReferenceNotFoundError(label, entity_id)
        return entity

    def _save(self, entity, conflict_message: str):
        """Commit a new or changed entity, mapping unique violations to ConflictError."""
        self.session.add(entity)
        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            logger.warning(f"{conflict_message}: {e.orig}")
            raise ConflictError(conflict_message)
        self.session.refresh(entity)
        return entity

    @staticmethod
    def _paginate(query, order_by, page: int, page_size: int) -> Tuple[List[Any], int]:
        total = query.count()
        items = query.order_by(*order_by).offset((page - 1) * page_size).limit(page_size).all()
        return items, total

    # Agencies

    def list_agencies(self, active: Optional[bool] = None, search: Optional[str] = None,
                      page: int = 1, page_size: int = 50) -> Tuple[List[Agency], int]:
        query = self.session.query(Agency)
        if active is not None:
            query = query.filter(Agency.active.is_(active))
        if search:
            query = query.filter(Agency.name.ilike(f"%{search}%") | Agency.external_name.ilike(f"%{search}%"))
        return self._paginate(query, (Agency.name, Agency.id), page, page_size)

    def get_agency(self, agency_id: int) -> Agency:
        return self._get(Agency, agency_id, 'Agency')

    def create_agency(self, data: Dict[str, Any]) -> Agency:
        agency = Agency()
        _apply(agency, data, AGENCY_FIELDS)
        agency = self._save(agency, f"Agency '{data.get('external_name')}' already exists")
        logger.info(f"Created agency {agency.id} '{agency.external_name}'")
        return agency

    def update_agency(self, agency_id: int, data: Dict[str, Any]) -> Agency:
        agency = self.get_agency(agency_id)
        _apply(agency, data, AGENCY_FIELDS)
        return self._save(agency, f"Agency '{agency.external_name}' already exists")

    def deactivate_agency(self, agency_id: int) -> Agency:
        agency = self.get_agency(agency_id)
        agency.active = False
        self.session.commit()
        logger.info(f"Deactivated agency {agency_id}")
        return agency

    # Inspectors

    def list_inspectors(self, active: Optional[bool] = None, search: Optional[str] = None,
                        page: int = 1, page_size: int = 50) -> Tuple[List[Inspector], int]:
        query = self.session.query(Inspector)
        if active is not None:
            query = query.filter(Inspector.active.is_(active))
        if search:
            query = query.filter(
                Inspector.name.ilike(f"%{search}%") | Inspector.external_name.ilike(f"%{search}%")
            )
        return self._paginate(query, (Inspector.name, Inspector.id), page, page_size)

    def get_inspector(self, inspector_id: int) -> Inspector:
        return self._get(Inspector, inspector_id, 'Inspector')

    def create_inspector(self, data: Dict[str, Any]) -> Inspector:
        inspector = Inspector()
        _apply(inspector, data, INSPECTOR_FIELDS)
        inspector = self._save(inspector, f"Inspector '{data.get('external_name')}' already exists")
        logger.info(f"Created inspector {inspector.id} '{inspector.external_name}'")
        return inspector

    def update_inspector(self, inspector_id: int, data: Dict[str, Any]) -> Inspector:
        inspector = self.get_inspector(inspector_id)
        _apply(inspector, data, INSPECTOR_FIELDS)
        return self._save(inspector, f"Inspector '{inspector.external_name}' already exists")

    def deactivate_inspector(self, inspector_id: int) -> Inspector:
        inspector = self.get_inspector(inspector_id)
        inspector.active = False
        self.session.commit()
        logger.info(f"Deactivated inspector {inspector_id}")
        return inspector

    # Service types

    def list_service_types(self, active: Optional[bool] = None) -> List[ServiceType]:
        query = self.session.query(ServiceType)
        if active is not None:
            query = query.filter(ServiceType.active.is_(active))
        return query.order_by(ServiceType.code).all()

    def get_service_type(self, service_type_id: int) -> ServiceType:
        return self._get(ServiceType, service_type_id, 'Service type')

    def create_service_type(self, data: Dict[str, Any]) -> ServiceType:
        service_type = ServiceType()
        _apply(service_type, data, SERVICE_TYPE_FIELDS)
        return self._save(service_type, f"Service type code '{data.get('code')}' already exists")

    def update_service_type(self, service_type_id: int, data: Dict[str, Any]) -> ServiceType:
        service_type = self.get_service_type(service_type_id)
        _apply(service_type, data, SERVICE_TYPE_FIELDS)
        return self._save(service_type, f"Service type code '{service_type.code}' already exists")

    def deactivate_service_type(self, service_type_id: int) -> ServiceType:
        service_type = self.get_service_type(service_type_id)
        service_type.active = False
        self.session.commit()
        return service_type

    # Area bands

    def list_area_bands(self) -> List[AreaBand]:
        return self.session.query(AreaBand).order_by(AreaBand.position, AreaBand.id).all()

    def get_area_band(self, area_band_id: int) -> AreaBand:
        return self._get(AreaBand, area_band_id, 'Area band')

    @staticmethod
    def _check_band_range(band: AreaBand):
        if Decimal(str(band.max_area)) < Decimal(str(band.min_area)):
            raise BillingError(
                f"Area band max_area ({band.max_area}) is below min_area ({band.min_area})",
                status_code=422
            )

    def create_area_band(self, data: Dict[str, Any]) -> AreaBand:
        band = AreaBand()
        _apply(band, data, AREA_BAND_FIELDS)
        self._check_band_range(band)
        return self._save(band, f"Area band '{data.get('name')}' could not be created")

    def update_area_band(self, area_band_id: int, data: Dict[str, Any]) -> AreaBand:
        band = self.get_area_band(area_band_id)
        _apply(band, data, AREA_BAND_FIELDS)
        self._check_band_range(band)
        return self._save(band, f"Area band {area_band_id} could not be updated")

    def delete_area_band(self, area_band_id: int):
        """
        Delete an area band that no rate row uses.

        Raises:
            ReferenceNotFoundError: If the band does not exist
            ConflictError: If price or payout rows still point at it
        """
        band = self.get_area_band(area_band_id)
        references = (
            self.session.query(PriceTable).filter(PriceTable.area_band_id == area_band_id).count()
            + self.session.query(PayoutTable).filter(PayoutTable.area_band_id == area_band_id).count()
        )
        if references:
            logger.warning(f"Area band {area_band_id} delete rejected: {references} rate rows")
            raise ConflictError(f"Area band {area_band_id} is still referenced by {references} rate rows")

        self.session.delete(band)
        self.session.commit()
        logger.info(f"Deleted area band {area_band_id}")

    # Price and payout tables

    def _check_rate_references(self, data: Dict[str, Any]):
        if data.get('service_type_id') is not None:
            self.get_service_type(data['service_type_id'])
        if data.get('area_band_id') is not None:
            self.get_area_band(data['area_band_id'])

    def list_price_tables(self, agency_id: int, active: Optional[bool] = None) -> List[PriceTable]:
        self.get_agency(agency_id)
        query = self.session.query(PriceTable).filter(PriceTable.agency_id == agency_id)
        if active is not None:
            query = query.filter(PriceTable.active.is_(active))
        return query.order_by(PriceTable.service_type_id, PriceTable.area_band_id, PriceTable.id).all()

    def get_price_table(self, price_table_id: int) -> PriceTable:
        return self._get(PriceTable, price_table_id, 'Price table')

    def create_price_table(self, data: Dict[str, Any]) -> PriceTable:
        self.get_agency(data['agency_id'])
        self._check_rate_references(data)
        row = PriceTable(agency_id=data['agency_id'])
        _apply(row, data, RATE_FIELDS)
        return self._save(row, 'Price table row could not be created')

    def update_price_table(self, price_table_id: int, data: Dict[str, Any]) -> PriceTable:
        row = self.get_price_table(price_table_id)
        self._check_rate_references(data)
        _apply(row, data, RATE_FIELDS)
        return self._save(row, f"Price table {price_table_id} could not be updated")

    def deactivate_price_table(self, price_table_id: int) -> PriceTable:
        row = self.get_price_table(price_table_id)
        row.active = False
        self.session.commit()
        return row

    def list_payout_tables(self, inspector_id: int, active: Optional[bool] = None) -> List[PayoutTable]:
        self.get_inspector(inspector_id)
        query = self.session.query(PayoutTable).filter(PayoutTable.inspector_id == inspector_id)
        if active is not None:
            query = query.filter(PayoutTable.active.is_(active))
        return query.order_by(PayoutTable.service_type_id, PayoutTable.area_band_id, PayoutTable.id).all()

    def get_payout_table(self, payout_table_id: int) -> PayoutTable:
        return self._get(PayoutTable, payout_table_id, 'Payout table')

    def create_payout_table(self, data: Dict[str, Any]) -> PayoutTable:
        self.get_inspector(data['inspector_id'])
        self._check_rate_references(data)
        row = PayoutTable(inspector_id=data['inspector_id'])
        _apply(row, data, RATE_FIELDS)
        return self._save(row, 'Payout table row could not be created')

    def update_payout_table(self, payout_table_id: int, data: Dict[str, Any]) -> PayoutTable:
        row = self.get_payout_table(payout_table_id)
        self._check_rate_references(data)
        _apply(row, data, RATE_FIELDS)
        return self._save(row, f"Payout table {payout_table_id} could not be updated")

    def deactivate_payout_table(self, payout_table_id: int) -> PayoutTable:
        row = self.get_payout_table(payout_table_id)
        row.active = False
        self.session.commit()
        return row

    # Seeding

    def seed_reference_data(self) -> Dict[str, int]:
        """
        Install the default service types and area bands.

        Existing service types (by code) and bands (by name) are left
        untouched, so running it twice is harmless.

        Returns:
            {'service_types': created_count, 'area_bands': created_count}
        """
        created = {'service_types': 0, 'area_bands': 0}

        existing_codes = {code for (code,) in self.session.query(ServiceType.code).all()}
        for code, name, description in DEFAULT_SERVICE_TYPES:
            if code in existing_codes:
                continue
            self.session.add(ServiceType(code=code, name=name, description=description))
            created['service_types'] += 1

        existing_bands = {name for (name,) in self.session.query(AreaBand.name).all()}
        for position, (name, min_area, max_area, multiplier) in enumerate(DEFAULT_AREA_BANDS, 1):
            if name in existing_bands:
                continue
            self.session.add(AreaBand(
                name=name,
                min_area=Decimal(min_area),
                max_area=Decimal(max_area),
                multiplier=Decimal(multiplier),
                position=position
            ))
            created['area_bands'] += 1

        self.session.commit()
        logger.info(f"Seeded {created['service_types']} service types and {created['area_bands']} area bands")
        return created
