"""Invoice drafts, numbering and lifecycle."""

from teamledger.invoicing.manager import InvoiceLifecycleManager

__all__ = ["InvoiceLifecycleManager"]
