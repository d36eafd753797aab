"""
Spreadsheet Import Service - Framework-agnostic business logic.

Replaces the inspections of a closure with the rows of a scheduling-system
export. Unknown agencies, inspectors and service types are created on the
fly. The whole replacement runs in one transaction; each row is inserted in
its own savepoint so a bad row is reported without aborting the batch.
"""

import logging
import zipfile
from io import BytesIO
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.orm import Session

from backend.models.schema import (
    Agency, Closure, ClosureStatus, Inspection, InspectionStatus, Inspector, ServiceType
)
from services.exceptions import ClosureNotFoundError, InvalidTransitionError, SpreadsheetFormatError
from services.spreadsheet_parser import (
    UNKNOWN_CITY, InspectionRow, RowValidationError, is_empty_row, map_headers, parse_row,
    split_service_type_label
)
from services.workflow import IMPORTABLE_CLOSURE_STATUSES, transition_closure

logger = logging.getLogger(__name__)

WorkbookSource = Union[str, Path, bytes]

# Row-level failures that are reported instead of aborting the import
ROW_ERRORS = (IntegrityError, DataError, ValueError)


class SpreadsheetImportService:
    """
    Imports an .xlsx export into a closure.

    Only the first worksheet is read; row 1 is the header.
    """

    def __init__(
        self,
        db_session: Session,
        progress_callback: Optional[Callable[[str, float, str], None]] = None
    ):
        """
        Initialize import service.

        Args:
            db_session: SQLAlchemy database session
            progress_callback: Optional callback for progress updates
                              Signature: callback(stage: str, percent: float, message: str)
        """
        self.session = db_session
        self.progress_callback = progress_callback or (lambda *args: None)

        # Lowercased natural key -> entity, filled per import
        self._agencies: Dict[str, Agency] = {}
        self._inspectors: Dict[str, Inspector] = {}
        self._service_types: Dict[str, ServiceType] = {}

    def _emit_progress(self, stage: str, percent: float, message: str):
        """Emit progress update via callback."""
        self.progress_callback(stage, percent, message)
        logger.info(f"Progress: {stage} ({percent:.1f}%) - {message}")

    def load_worksheet(self, source: WorkbookSource):
        """
        Open the first worksheet of a workbook.

        Args:
            source: File path or raw .xlsx bytes

        Raises:
            SpreadsheetFormatError: If the file is not a readable workbook
        """
        try:
            if isinstance(source, (bytes, bytearray)):
                workbook = openpyxl.load_workbook(BytesIO(source), data_only=True)
            else:
                workbook = openpyxl.load_workbook(str(source), data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError) as e:
            raise SpreadsheetFormatError(f"Could not read workbook: {e}")

        if not workbook.worksheets:
            raise SpreadsheetFormatError('Workbook has no worksheets')
        return workbook.worksheets[0]

    def read_rows(self, worksheet) -> Tuple[List[InspectionRow], int, List[Dict[str, Any]]]:
        """
        Parse the data rows of a worksheet.

        Returns:
            (rows, total, errors) where total counts every non-empty data row
            and errors holds {row, message} for rows that failed validation
        """
        row_iter = worksheet.iter_rows(values_only=True)
        header = next(row_iter, None)
        if header is None or is_empty_row(header):
            raise SpreadsheetFormatError('Worksheet has no header row')

        columns = map_headers(header)
        rows: List[InspectionRow] = []
        errors: List[Dict[str, Any]] = []
        total = 0

        for row_number, values in enumerate(row_iter, start=2):
            if is_empty_row(values):
                continue
            total += 1
            try:
                row = parse_row(values, columns, row_number)
            except RowValidationError as e:
                logger.warning(f"Row {row_number} skipped: {e}")
                errors.append({'row': row_number, 'message': str(e)})
                continue

            for warning in row.warnings:
                logger.warning(f"Row {row_number}: {warning}")
            rows.append(row)

        logger.info(f"Parsed {len(rows)} valid rows out of {total}")
        return rows, total, errors

    def _load_caches(self):
        self._agencies = {a.external_name.lower(): a for a in self.session.query(Agency).all()}
        self._inspectors = {i.external_name.lower(): i for i in self.session.query(Inspector).all()}
        self._service_types = {s.code.lower(): s for s in self.session.query(ServiceType).all()}

    def _resolve_agency(self, row: InspectionRow) -> Tuple[Agency, bool]:
        agency = self._agencies.get(row.client.lower())
        if agency is not None:
            return agency, False
        agency = Agency(
            name=row.client,
            external_name=row.client,
            city=row.city if row.city != UNKNOWN_CITY else None
        )
        self.session.add(agency)
        return agency, True

    def _resolve_inspector(self, row: InspectionRow) -> Tuple[Inspector, bool]:
        inspector = self._inspectors.get(row.inspector.lower())
        if inspector is not None:
            return inspector, False
        inspector = Inspector(
            name=row.inspector,
            external_name=row.inspector,
            city=row.city if row.city != UNKNOWN_CITY else None
        )
        self.session.add(inspector)
        return inspector, True

    def _resolve_service_type(self, label: str) -> Tuple[ServiceType, bool]:
        service_type = self._service_types.get(label.lower())
        if service_type is not None:
            return service_type, False

        code, name = split_service_type_label(label)
        service_type = self._service_types.get(code.lower())
        if service_type is not None:
            return service_type, False

        service_type = ServiceType(code=code, name=name)
        self.session.add(service_type)
        return service_type, True

    def _insert_row(self, closure: Closure, row: InspectionRow,
                    new_agencies: List[str], new_inspectors: List[str]):
        """Insert one row inside a savepoint and update the caches on success."""
        with self.session.begin_nested():
            agency, agency_created = self._resolve_agency(row)
            inspector, inspector_created = self._resolve_inspector(row)
            service_type, service_type_created = self._resolve_service_type(row.service_type_label)
            self.session.flush()

            self.session.add(Inspection(
                closure_id=closure.id,
                agency_id=agency.id,
                inspector_id=inspector.id,
                service_type_id=service_type.id,
                external_id=row.external_id,
                contract_number=row.contract_number,
                address=row.address or None,
                city=row.city,
                reported_area=row.reported_area,
                measured_area=row.measured_area,
                billable_area=row.billable_area,
                furnishing=row.furnishing,
                scheduled_at=row.scheduled_at,
                finished_at=row.finished_at,
                status=InspectionStatus.IMPORTED.value,
            ))
            self.session.flush()

        if agency_created:
            self._agencies[row.client.lower()] = agency
            new_agencies.append(row.client)
            logger.info(f"Created agency '{row.client}'")
        if inspector_created:
            self._inspectors[row.inspector.lower()] = inspector
            new_inspectors.append(row.inspector)
            logger.info(f"Created inspector '{row.inspector}'")
        if service_type_created:
            self._service_types[service_type.code.lower()] = service_type
            logger.info(f"Created service type {service_type.code} '{service_type.name}'")
        self._service_types[row.service_type_label.lower()] = service_type

    def _finalize_closure(self, closure: Closure, imported: int):
        """Mark the closure imported and reset its totals."""
        transition_closure(closure, ClosureStatus.IMPORTED)
        closure.total_inspections = imported
        closure.total_receivable = 0
        closure.total_payable = 0

    def import_file(self, closure_id: int, source: WorkbookSource) -> Dict[str, Any]:
        """
        Main import workflow.

        Args:
            closure_id: Closure whose inspections are replaced
            source: Path to the .xlsx file or its raw bytes

        Returns:
            {
                'total': int,
                'imported': int,
                'errors': [{'row': int, 'message': str}],
                'new_agencies': [str],
                'new_inspectors': [str]
            }

        Raises:
            ClosureNotFoundError: If the closure does not exist
            InvalidTransitionError: If the closure is past the import stage
            SpreadsheetFormatError: If the workbook cannot be read
        """
        logger.info(f"Starting import into closure {closure_id}")

        closure = self.session.get(Closure, closure_id)
        if closure is None:
            raise ClosureNotFoundError(closure_id)
        if ClosureStatus(closure.status) not in IMPORTABLE_CLOSURE_STATUSES:
            raise InvalidTransitionError('Closure', closure.status, ClosureStatus.IMPORTED.value)

        # Step 1: Read workbook (0-30%)
        self._emit_progress('reading', 5, 'Opening workbook...')
        worksheet = self.load_worksheet(source)
        self._emit_progress('parsing', 10, f"Parsing sheet: {worksheet.title}")
        rows, total, errors = self.read_rows(worksheet)

        result = {
            'total': total,
            'imported': 0,
            'errors': errors,
            'new_agencies': [],
            'new_inspectors': []
        }

        try:
            # Step 2: Lock closure and clear previous records (30-40%)
            self._emit_progress('replacing', 30, 'Removing previous inspections...')
            closure = (
                self.session.query(Closure)
                .filter(Closure.id == closure_id)
                .with_for_update()
                .one()
            )
            deleted = (
                self.session.query(Inspection)
                .filter(Inspection.closure_id == closure_id)
                .delete(synchronize_session=False)
            )
            logger.info(f"Deleted {deleted} previous inspections of closure {closure_id}")
            self._load_caches()

            # Step 3: Insert rows (40-90%)
            for index, row in enumerate(rows):
                if index % 100 == 0:
                    self._emit_progress(
                        'inserting', 40 + 50 * (index / max(len(rows), 1)),
                        f"Inserting rows {index}/{len(rows)}"
                    )
                try:
                    self._insert_row(closure, row, result['new_agencies'], result['new_inspectors'])
                except ROW_ERRORS as e:
                    logger.warning(f"Row {row.row_number} not imported: {e}")
                    result['errors'].append({'row': row.row_number, 'message': str(e)})
                    continue
                result['imported'] += 1

            # Step 4: Update closure (90-100%)
            self._emit_progress('finalizing', 95, 'Finalizing import...')
            self._finalize_closure(closure, result['imported'])
            self.session.commit()

        except Exception as e:
            logger.error(f"Import into closure {closure_id} failed: {e}", exc_info=True)
            self.session.rollback()
            raise

        result['errors'].sort(key=lambda error: error['row'])
        self._emit_progress('complete', 100, 'Import complete')
        logger.info(
            f"Import into closure {closure_id} complete: {result['imported']}/{result['total']} rows, "
            f"{len(result['errors'])} errors, {len(result['new_agencies'])} new agencies, "
            f"{len(result['new_inspectors'])} new inspectors"
        )
        return result
