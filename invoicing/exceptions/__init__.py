"""Custom exceptions for the invoicing application."""

class InvoicingError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['error'] = self.message
        rv['success'] = False
        return rv

class ValidationError(InvoicingError):
    """Raised for malformed or missing required input."""
    def __init__(self, message, payload=None):
        super().__init__(message, 400, payload)

class NotFoundError(InvoicingError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Invoice not found", payload=None):
        super().__init__(message, 404, payload)

class DuplicateInvoiceNumberError(InvoicingError):
    """Raised when an invoice number is already taken."""
    def __init__(self, invoice_number):
        self.invoice_number = invoice_number
        super().__init__(
            "Invoice number already exists",
            status_code=409,
            payload={'invoice_number': invoice_number}
        )

class StorageUnavailableError(InvoicingError):
    """Raised when the database or counter backend cannot be reached. Retryable."""
    def __init__(self, message="Storage unavailable", payload=None):
        super().__init__(message, 503, payload)

class RenderFailureError(InvoicingError):
    """Raised when the PDF engine fails on sanitized input."""
    def __init__(self, message="Failed to generate PDF", payload=None):
        super().__init__(message, 500, payload)
