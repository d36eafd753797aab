"""
Domain exceptions raised by the billing services.

Each exception carries an HTTP status code and a short machine-readable code
so the API layer can translate it without knowing about individual services.
"""


class BillingError(Exception):
    """Base class for all billing service errors."""

    status_code = 400
    code = 'billing_error'

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(BillingError):
    """Raised when a requested entity does not exist."""

    status_code = 404
    code = 'not_found'


class ClosureNotFoundError(NotFoundError):
    """Raised when a closure id does not exist."""

    code = 'closure_not_found'

    def __init__(self, closure_id: int):
        super().__init__(f"Closure {closure_id} not found")
        self.closure_id = closure_id


class InspectionNotFoundError(NotFoundError):
    """Raised when an inspection id does not exist."""

    code = 'inspection_not_found'

    def __init__(self, inspection_id: int):
        super().__init__(f"Inspection {inspection_id} not found")
        self.inspection_id = inspection_id


class ReferenceNotFoundError(NotFoundError):
    """Raised when an agency, inspector, service type, band or rate row is missing."""

    code = 'reference_not_found'

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransitionError(BillingError):
    """Raised when a status change is not allowed by the workflow."""

    status_code = 409
    code = 'invalid_transition'

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(f"{entity} cannot move from '{current}' to '{target}'")
        self.entity = entity
        self.current = current
        self.target = target


class ConflictError(BillingError):
    """Raised when a write would violate a uniqueness rule."""

    status_code = 409
    code = 'conflict'


class SpreadsheetFormatError(BillingError):
    """Raised when an uploaded workbook cannot be read."""

    status_code = 422
    code = 'spreadsheet_format'
