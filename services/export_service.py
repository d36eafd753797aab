"""
Spreadsheet export of closure receivables and payables.

Each export is an .xlsx workbook with three sheets: a per-party summary
("Resumo"), one row per inspection ("Detalhes") and a flat layout for the
financial system import ("Flow Import").
"""

import calendar
import logging
from collections import OrderedDict
from datetime import date
from decimal import Decimal
from io import BytesIO
from typing import Dict, List, Optional, Sequence

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter
from sqlalchemy.orm import Session, joinedload

from backend.models.schema import (
    Agency, Closure, FurnishingState, Inspection, InspectionStatus, Inspector
)
from services.exceptions import ClosureNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_PAYMENT_DAY = 12
DEFAULT_PAYOUT_DAY = 20
DEFAULT_CURRENCY_FORMAT = 'R$ #,##0.00'
DATE_FORMAT = 'DD/MM/YYYY'

EXPORTABLE_STATUSES = (
    InspectionStatus.CALCULATED.value,
    InspectionStatus.APPROVED.value,
    InspectionStatus.INVOICED.value,
)

RECEIVABLE_COST_CENTRE = 'Vistorias'
PAYABLE_COST_CENTRE = 'Vistoriadores'

_RECEIVABLE_FILL = PatternFill('solid', fgColor='FF4472C4')
_PAYABLE_FILL = PatternFill('solid', fgColor='FF70AD47')
_HEADER_FONT = Font(bold=True, color='FFFFFFFF')
_BOLD_FONT = Font(bold=True)

_FURNISHING_LABELS = {
    FurnishingState.FURNISHED.value: 'Sim',
    FurnishingState.SEMI_FURNISHED.value: 'Semi',
    FurnishingState.UNFURNISHED.value: 'Não',
}


def _following_month(month: int, year: int):
    if month == 12:
        return 1, year + 1
    return month + 1, year


def agency_due_date(month: int, year: int, payment_day: Optional[int],
                    default_day: int = DEFAULT_PAYMENT_DAY) -> date:
    """
    Invoice due date: the agency's payment day (or default_day) in the month
    after the reference month, clipped to that month's last day.
    """
    due_month, due_year = _following_month(month, year)
    last_day = calendar.monthrange(due_year, due_month)[1]
    return date(due_year, due_month, min(payment_day or default_day, last_day))


def payout_date(month: int, year: int, payout_day: int = DEFAULT_PAYOUT_DAY) -> date:
    """Inspector payment date: a fixed day of the month after the reference month."""
    pay_month, pay_year = _following_month(month, year)
    last_day = calendar.monthrange(pay_year, pay_month)[1]
    return date(pay_year, pay_month, min(payout_day, last_day))


def _format_sheet(ws, widths: Sequence[int], fill: Optional[PatternFill] = None):
    """Style the header row and set column widths."""
    for cell in ws[1]:
        if fill is not None:
            cell.font = _HEADER_FONT
            cell.fill = fill
        else:
            cell.font = _BOLD_FONT
    for index, width in enumerate(widths, 1):
        ws.column_dimensions[get_column_letter(index)].width = width


def _apply_number_format(ws, column: int, number_format: str, first_row: int = 2):
    for row in ws.iter_rows(min_row=first_row, min_col=column, max_col=column):
        for cell in row:
            if cell.value is not None:
                cell.number_format = number_format


def _to_bytes(workbook: Workbook) -> bytes:
    output = BytesIO()
    workbook.save(output)
    return output.getvalue()


class _Group:
    """Inspections of one party with their running total."""

    def __init__(self, party):
        self.party = party
        self.inspections: List[Inspection] = []
        self.total = Decimal('0.00')


class ExportService:
    """Builds receivable and payable workbooks for a closure."""

    def __init__(
        self,
        db_session: Session,
        currency_format: str = DEFAULT_CURRENCY_FORMAT,
        payout_day: int = DEFAULT_PAYOUT_DAY,
        default_payment_day: int = DEFAULT_PAYMENT_DAY
    ):
        self.session = db_session
        self.currency_format = currency_format
        self.payout_day = payout_day
        self.default_payment_day = default_payment_day

    def _get_closure(self, closure_id: int) -> Closure:
        closure = self.session.get(Closure, closure_id)
        if closure is None:
            raise ClosureNotFoundError(closure_id)
        return closure

    def _exportable(self, closure_id: int, party_model, party_join) -> List[Inspection]:
        return (
            self.session.query(Inspection)
            .join(party_model, party_join)
            .options(
                joinedload(Inspection.agency),
                joinedload(Inspection.inspector),
                joinedload(Inspection.service_type)
            )
            .filter(
                Inspection.closure_id == closure_id,
                Inspection.status.in_(EXPORTABLE_STATUSES)
            )
            .order_by(party_model.name, Inspection.created_at, Inspection.id)
            .all()
        )

    @staticmethod
    def _group(inspections: List[Inspection], party_attr: str, amount_attr: str) -> Dict[int, _Group]:
        groups: Dict[int, _Group] = OrderedDict()
        for inspection in inspections:
            party = getattr(inspection, party_attr)
            group = groups.get(party.id)
            if group is None:
                group = groups[party.id] = _Group(party)
            group.inspections.append(inspection)
            group.total += getattr(inspection, amount_attr) or Decimal('0')
        return groups

    @staticmethod
    def _service_name(inspection: Inspection) -> str:
        return inspection.service_type.name if inspection.service_type else ''

    def export_receivables(self, closure_id: int) -> bytes:
        """
        Build the receivables workbook (grouped by agency).

        Args:
            closure_id: Closure to export

        Returns:
            .xlsx file content

        Raises:
            ClosureNotFoundError: If the closure does not exist
        """
        closure = self._get_closure(closure_id)
        inspections = self._exportable(closure_id, Agency, Inspection.agency_id == Agency.id)
        groups = self._group(inspections, 'agency', 'receivable_amount')
        reference = closure.reference_label
        logger.info(f"Exporting receivables of closure {closure_id}: "
                    f"{len(inspections)} inspections, {len(groups)} agencies")

        workbook = Workbook()

        summary = workbook.active
        summary.title = 'Resumo'
        summary.append(['Cliente', 'CNPJ', 'Qtd Vistorias', 'Valor Total', 'Vencimento',
                        'Forma Pagamento', 'Referência'])
        grand_total = Decimal('0.00')
        for group in groups.values():
            agency = group.party
            summary.append([
                agency.name,
                agency.tax_id or '-',
                len(group.inspections),
                group.total,
                agency_due_date(closure.reference_month, closure.reference_year, agency.payment_day,
                                self.default_payment_day),
                agency.payment_method,
                f"Vistorias {reference}",
            ])
            grand_total += group.total
        summary.append(['TOTAL GERAL', None, len(inspections), grand_total])
        for cell in summary[summary.max_row]:
            cell.font = _BOLD_FONT
        _format_sheet(summary, (40, 20, 15, 20, 15, 18, 25), _RECEIVABLE_FILL)
        _apply_number_format(summary, 4, self.currency_format)
        _apply_number_format(summary, 5, DATE_FORMAT)

        details = workbook.create_sheet('Detalhes')
        details.append(['Cliente', 'ID KSI', 'Endereço', 'Cidade', 'Tipo Serviço',
                        'Área (m²)', 'Mobiliado', 'Valor'])
        for inspection in inspections:
            details.append([
                inspection.agency.name,
                inspection.external_id,
                inspection.address,
                inspection.city,
                self._service_name(inspection),
                inspection.billable_area,
                _FURNISHING_LABELS.get(inspection.furnishing, 'Não'),
                inspection.receivable_amount,
            ])
        _format_sheet(details, (35, 12, 45, 20, 25, 12, 12, 15), _RECEIVABLE_FILL)
        _apply_number_format(details, 8, self.currency_format)

        flow = workbook.create_sheet('Flow Import')
        flow.append(['Cliente', 'Valor', 'Vencimento', 'Forma Pagamento', 'Descrição',
                     'Centro de Custo'])
        for group in groups.values():
            agency = group.party
            due = agency_due_date(closure.reference_month, closure.reference_year, agency.payment_day,
                                  self.default_payment_day)
            flow.append([
                agency.name,
                group.total,
                due.isoformat(),
                agency.payment_method,
                f"Vistorias ref. {reference}",
                RECEIVABLE_COST_CENTRE,
            ])
        _format_sheet(flow, (40, 15, 15, 15, 40, 20))

        return _to_bytes(workbook)

    def export_payables(self, closure_id: int) -> bytes:
        """
        Build the payables workbook (grouped by inspector).

        Args:
            closure_id: Closure to export

        Returns:
            .xlsx file content

        Raises:
            ClosureNotFoundError: If the closure does not exist
        """
        closure = self._get_closure(closure_id)
        inspections = self._exportable(closure_id, Inspector, Inspection.inspector_id == Inspector.id)
        groups = self._group(inspections, 'inspector', 'payable_amount')
        reference = closure.reference_label
        pay_date = payout_date(closure.reference_month, closure.reference_year, self.payout_day)
        logger.info(f"Exporting payables of closure {closure_id}: "
                    f"{len(inspections)} inspections, {len(groups)} inspectors")

        workbook = Workbook()

        summary = workbook.active
        summary.title = 'Resumo'
        summary.append(['Vistoriador', 'CPF', 'Qtd Vistorias', 'Valor Total', 'Chave PIX',
                        'Referência'])
        grand_total = Decimal('0.00')
        for group in groups.values():
            inspector = group.party
            summary.append([
                inspector.name,
                inspector.tax_id or '-',
                len(group.inspections),
                group.total,
                inspector.pix_key or '-',
                f"Vistorias {reference}",
            ])
            grand_total += group.total
        summary.append(['TOTAL GERAL', None, len(inspections), grand_total])
        for cell in summary[summary.max_row]:
            cell.font = _BOLD_FONT
        _format_sheet(summary, (35, 15, 15, 18, 30, 25), _PAYABLE_FILL)
        _apply_number_format(summary, 4, self.currency_format)

        details = workbook.create_sheet('Detalhes')
        details.append(['Vistoriador', 'Cliente', 'ID KSI', 'Endereço', 'Cidade', 'Tipo Serviço',
                        'Área (m²)', 'Mobiliado', 'Valor'])
        for inspection in inspections:
            details.append([
                inspection.inspector.name,
                inspection.agency.name,
                inspection.external_id,
                inspection.address,
                inspection.city,
                self._service_name(inspection),
                inspection.billable_area,
                _FURNISHING_LABELS.get(inspection.furnishing, 'Não'),
                inspection.payable_amount,
            ])
        _format_sheet(details, (30, 30, 12, 40, 18, 22, 12, 12, 15), _PAYABLE_FILL)
        _apply_number_format(details, 9, self.currency_format)

        flow = workbook.create_sheet('Flow Import')
        flow.append(['Fornecedor', 'CPF', 'Valor', 'Data Pagamento', 'Chave PIX', 'Descrição',
                     'Centro de Custo'])
        for group in groups.values():
            inspector = group.party
            flow.append([
                inspector.name,
                inspector.tax_id or '',
                group.total,
                pay_date.isoformat(),
                inspector.pix_key or '',
                f"Vistorias ref. {reference}",
                PAYABLE_COST_CENTRE,
            ])
        _format_sheet(flow, (35, 15, 15, 15, 30, 40, 20))

        return _to_bytes(workbook)
