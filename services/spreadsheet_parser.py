"""
Parsing helpers for the scheduling-system spreadsheet export.

The export is semi-structured: header names vary slightly between versions,
numbers may carry units or comma decimals, and the city is often only present
inside the address. These helpers turn raw openpyxl cell values into typed
InspectionRow records.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence, Tuple

from backend.models.schema import FurnishingState

logger = logging.getLogger(__name__)

UNKNOWN_CITY = 'NÃO IDENTIFICADA'

# Logical field -> accepted header names (lowercased, stripped), in priority order
HEADER_ALIASES: Dict[str, Tuple[str, ...]] = {
    'external_id': ('id',),
    'contract_number': ('n° contrato', 'nº contrato', 'contrato'),
    'client': ('cliente',),
    'inspector': ('vistoriadores', 'vistoriador'),
    'address': ('endereço', 'endereco'),
    'city': ('cidade',),
    'reported_area': ('área infor.', 'area informada'),
    'measured_area': ('área aferida', 'area aferida'),
    'billable_area': ('área à faturar', 'área a faturar', 'area faturar'),
    'furnishing': ('mobiliado',),
    'service_type': ('tipo serviço', 'tipo servico'),
    'scheduled_at': ('data agenda',),
    'finished_at': ('data finalizado',),
}

FURNISHED_VALUES = frozenset({'SIM', 'S', 'MOBILIADO'})
SEMI_FURNISHED_VALUES = frozenset({'SEMI', 'SEMI-MOBILIADO', 'PARCIAL'})

DATE_FORMATS = (
    '%Y-%m-%d',
    '%Y-%m-%d %H:%M',
    '%Y-%m-%d %H:%M:%S',
    '%Y-%m-%dT%H:%M',
    '%Y-%m-%dT%H:%M:%S',
    '%d/%m/%Y',
    '%d/%m/%Y %H:%M',
    '%d/%m/%Y %H:%M:%S',
)

NUMBER_PREFIX_RE = re.compile(r'^\s*([-+]?\d*[.,]?\d+)')
SERVICE_TYPE_RE = re.compile(r'^(\d+\.?\d*)\s*[-–]\s*(.+)')
CITY_UF_CEP_RE = re.compile(r'([A-Za-zÀ-ÿ\s]+)/[A-Z]{2}\s*-?\s*CEP', re.IGNORECASE)
STATE_CODE_RE = re.compile(r'[A-Z]{2}')
UF_SUFFIX_RE = re.compile(r'/[A-Z]{2}.*')


class RowValidationError(ValueError):
    """Raised when a row lacks a required field."""


@dataclass
class InspectionRow:
    """Typed view of one data row of the export."""
    row_number: int
    external_id: str
    client: str
    inspector: str
    service_type_label: str
    contract_number: Optional[str] = None
    address: str = ''
    city: str = UNKNOWN_CITY
    reported_area: Optional[Decimal] = None
    measured_area: Optional[Decimal] = None
    billable_area: Decimal = Decimal('0')
    furnishing: str = FurnishingState.UNFURNISHED.value
    scheduled_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    warnings: List[str] = field(default_factory=list)


def map_headers(header_values: Sequence[Any]) -> Dict[str, int]:
    """
    Map logical field names to zero-based column indexes.

    Args:
        header_values: Cell values of the header row

    Returns:
        Dictionary of field -> column index for every field found
    """
    positions: Dict[str, int] = {}
    for index, value in enumerate(header_values):
        if value is None:
            continue
        name = str(value).lower().strip()
        if name and name not in positions:
            positions[name] = index

    columns: Dict[str, int] = {}
    for field_name, aliases in HEADER_ALIASES.items():
        for alias in aliases:
            if alias in positions:
                columns[field_name] = positions[alias]
                break

    missing = [name for name in ('external_id', 'client', 'inspector') if name not in columns]
    if missing:
        logger.warning(f"Header row lacks columns: {', '.join(missing)}")
    return columns


def is_empty_row(values: Sequence[Any]) -> bool:
    """True when every cell is None or blank text."""
    for value in values:
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return False
    return True


def parse_text(value: Any) -> str:
    """Cell value as stripped text; integral floats lose their '.0'."""
    if value is None:
        return ''
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value).strip()


def parse_number(value: Any) -> Optional[Decimal]:
    """
    Parse a numeric cell.

    Accepts native numbers, comma decimal separators and a leading number
    followed by anything (e.g. "120,5 m²").

    Returns:
        Decimal or None when the cell is blank or unparseable
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, Decimal)):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))

    text = str(value).strip()
    if not text:
        return None
    match = NUMBER_PREFIX_RE.match(text)
    if not match:
        return None
    try:
        return Decimal(match.group(1).replace(',', '.'))
    except InvalidOperation:
        return None


def parse_date(value: Any) -> Optional[datetime]:
    """
    Parse a date cell.

    Accepts native datetimes/dates and ISO or DD/MM/YYYY text with an
    optional time part.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    text = str(value).strip()
    if not text:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def extract_city(address: str) -> str:
    """
    Guess the city from a free-text address.

    Looks for "City/UF - CEP" first, then for the last dash-separated segment
    carrying a state code.
    """
    if not address:
        return UNKNOWN_CITY

    match = CITY_UF_CEP_RE.search(address)
    if match:
        city = match.group(1).strip()
        if city:
            return city

    for part in reversed(address.split('-')):
        if 'CEP' not in part and STATE_CODE_RE.search(part):
            city = UF_SUFFIX_RE.sub('', part).strip()
            if city:
                return city

    return UNKNOWN_CITY


def normalize_furnishing(value: Any) -> str:
    """Map the furnishing column to a FurnishingState value."""
    normalized = parse_text(value).upper()
    if normalized in FURNISHED_VALUES:
        return FurnishingState.FURNISHED.value
    if normalized in SEMI_FURNISHED_VALUES:
        return FurnishingState.SEMI_FURNISHED.value
    return FurnishingState.UNFURNISHED.value


def split_service_type_label(label: str) -> Tuple[str, str]:
    """
    Split a label such as "1.0 - VISTORIA DE ENTRADA" into (code, name).

    Labels without a numeric code prefix use their first 10 characters as
    code and the whole label as name.
    """
    label = label.strip()
    match = SERVICE_TYPE_RE.match(label)
    if match:
        return match.group(1), match.group(2).strip()
    return label[:10], label


def parse_row(values: Sequence[Any], columns: Dict[str, int], row_number: int) -> InspectionRow:
    """
    Convert one data row to an InspectionRow.

    Args:
        values: Cell values of the row
        columns: Output of map_headers
        row_number: 1-based sheet row number

    Raises:
        RowValidationError: If id, client, inspector or service type is missing
    """
    def cell(name: str) -> Any:
        index = columns.get(name)
        if index is None or index >= len(values):
            return None
        return values[index]

    warnings: List[str] = []

    def number(name: str) -> Optional[Decimal]:
        raw = cell(name)
        parsed = parse_number(raw)
        if parsed is None and parse_text(raw):
            warnings.append(f"{name} '{raw}' is not a number")
        return parsed

    def moment(name: str) -> Optional[datetime]:
        raw = cell(name)
        parsed = parse_date(raw)
        if parsed is None and parse_text(raw):
            warnings.append(f"{name} '{raw}' is not a date")
        return parsed

    external_id = parse_text(cell('external_id'))
    if not external_id:
        raise RowValidationError('id missing')
    client = parse_text(cell('client'))
    if not client:
        raise RowValidationError('client missing')
    inspector = parse_text(cell('inspector'))
    if not inspector:
        raise RowValidationError('inspector missing')
    service_type_label = parse_text(cell('service_type'))
    if not service_type_label:
        raise RowValidationError('service type missing')

    address = parse_text(cell('address'))
    city = parse_text(cell('city')) or extract_city(address)

    reported_area = number('reported_area')
    measured_area = number('measured_area')
    billable_area = number('billable_area')
    if billable_area is None:
        billable_area = measured_area if measured_area is not None else Decimal('0')

    return InspectionRow(
        row_number=row_number,
        external_id=external_id,
        client=client,
        inspector=inspector,
        service_type_label=service_type_label,
        contract_number=parse_text(cell('contract_number')) or None,
        address=address,
        city=city,
        reported_area=reported_area,
        measured_area=measured_area,
        billable_area=billable_area,
        furnishing=normalize_furnishing(cell('furnishing')),
        scheduled_at=moment('scheduled_at'),
        finished_at=moment('finished_at'),
        warnings=warnings,
    )
