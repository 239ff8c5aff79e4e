from .client import AccountingClient
from .schema import ExternalInvoicePayload, InvoiceDraft, map_to_external_invoice

__all__ = ["AccountingClient", "ExternalInvoicePayload", "InvoiceDraft", "map_to_external_invoice"]
