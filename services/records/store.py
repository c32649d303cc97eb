"""Record-store collaborator.

The pipeline reads and writes invoices, line items, processing logs and
templates through this interface. Production deployments back it with the
relational database; ``InMemoryRecordStore`` serves development and tests.

The relational implementation is expected to enforce a unique index on
(owner_id, invoice_number) so that concurrent submissions cannot both pass
the duplicate-number check.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from services.records.models import (
    InvoiceLineItem,
    InvoiceRecord,
    OwnerProfile,
    ProcessingLog,
    TemplateRecord,
    VendorRecord,
)
from services.shared.errors import JobNotFound

logger = logging.getLogger(__name__)


class RecordStore(ABC):
    """Async read/write access to invoice records."""

    @abstractmethod
    async def create_invoice(self, invoice: InvoiceRecord) -> InvoiceRecord:
        pass

    @abstractmethod
    async def get_invoice(self, invoice_id: str) -> InvoiceRecord | None:
        pass

    @abstractmethod
    async def update_invoice(self, invoice_id: str, **changes: Any) -> InvoiceRecord:
        """Apply field changes to an invoice.

        Raises:
            JobNotFound: If the invoice does not exist
        """
        pass

    @abstractmethod
    async def replace_line_items(self, invoice_id: str, items: list[InvoiceLineItem]) -> None:
        pass

    @abstractmethod
    async def add_processing_log(self, entry: ProcessingLog) -> None:
        pass

    @abstractmethod
    async def count_invoices_since(self, owner_id: str, since: datetime) -> int:
        pass

    @abstractmethod
    async def get_owner_profile(self, owner_id: str) -> OwnerProfile | None:
        pass

    @abstractmethod
    async def find_invoice_by_number(
        self, owner_id: str, invoice_number: str, exclude_id: str | None = None
    ) -> InvoiceRecord | None:
        pass

    @abstractmethod
    async def list_vendors(self, owner_id: str | None = None) -> list[VendorRecord]:
        """Vendors seen on prior invoices, used to backfill vendor identity."""
        pass

    @abstractmethod
    async def load_templates(self, limit: int) -> list[TemplateRecord]:
        """Stored templates ranked by usage count, most used first."""
        pass

    @abstractmethod
    async def save_template(self, template: TemplateRecord) -> None:
        pass

    @abstractmethod
    async def record_template_usage(self, template_id: str, used_at: datetime) -> None:
        pass


class InMemoryRecordStore(RecordStore):
    """Dictionary-backed record store.

    Records are copied on the way in and out so callers cannot mutate
    stored state.
    """

    def __init__(self) -> None:
        self.invoices: dict[str, InvoiceRecord] = {}
        self.logs: list[ProcessingLog] = []
        self.templates: dict[str, TemplateRecord] = {}
        self.profiles: dict[str, OwnerProfile] = {}
        self.vendors: list[VendorRecord] = []

    async def create_invoice(self, invoice: InvoiceRecord) -> InvoiceRecord:
        self.invoices[invoice.id] = invoice.model_copy(deep=True)
        return invoice.model_copy(deep=True)

    async def get_invoice(self, invoice_id: str) -> InvoiceRecord | None:
        invoice = self.invoices.get(invoice_id)
        return invoice.model_copy(deep=True) if invoice else None

    async def update_invoice(self, invoice_id: str, **changes: Any) -> InvoiceRecord:
        invoice = self.invoices.get(invoice_id)
        if invoice is None:
            raise JobNotFound(f"Invoice not found: {invoice_id}")
        updated = InvoiceRecord.model_validate({**invoice.model_dump(), **changes})
        self.invoices[invoice_id] = updated
        return updated.model_copy(deep=True)

    async def replace_line_items(self, invoice_id: str, items: list[InvoiceLineItem]) -> None:
        await self.update_invoice(invoice_id, items=[i.model_dump() for i in items])

    async def add_processing_log(self, entry: ProcessingLog) -> None:
        self.logs.append(entry)

    async def count_invoices_since(self, owner_id: str, since: datetime) -> int:
        return sum(
            1 for i in self.invoices.values() if i.owner_id == owner_id and i.created_at >= since
        )

    async def get_owner_profile(self, owner_id: str) -> OwnerProfile | None:
        return self.profiles.get(owner_id)

    async def find_invoice_by_number(
        self, owner_id: str, invoice_number: str, exclude_id: str | None = None
    ) -> InvoiceRecord | None:
        for invoice in self.invoices.values():
            if (
                invoice.owner_id == owner_id
                and invoice.invoice_number == invoice_number
                and invoice.id != exclude_id
            ):
                return invoice.model_copy(deep=True)
        return None

    async def list_vendors(self, owner_id: str | None = None) -> list[VendorRecord]:
        vendors = list(self.vendors)
        for invoice in self.invoices.values():
            if owner_id and invoice.owner_id != owner_id:
                continue
            if invoice.vendor_name and invoice.vendor_uen:
                vendors.append(
                    VendorRecord(
                        name=invoice.vendor_name,
                        uen=invoice.vendor_uen,
                        gst_number=invoice.vendor_gst_number,
                        address=invoice.vendor_address,
                    )
                )
        return vendors

    async def load_templates(self, limit: int) -> list[TemplateRecord]:
        ranked = sorted(self.templates.values(), key=lambda t: t.use_count, reverse=True)
        return [t.model_copy(deep=True) for t in ranked[:limit]]

    async def save_template(self, template: TemplateRecord) -> None:
        self.templates[template.id] = template.model_copy(deep=True)

    async def record_template_usage(self, template_id: str, used_at: datetime) -> None:
        template = self.templates.get(template_id)
        if template is None:
            logger.debug(f"Usage recorded for unsaved template {template_id}")
            return
        template.use_count += 1
        template.last_used = used_at

    def logs_for(self, invoice_id: str) -> list[ProcessingLog]:
        return [entry for entry in self.logs if entry.invoice_id == invoice_id]
