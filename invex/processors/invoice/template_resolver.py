"""
Vendor template resolution

Picks the vendor invoice template that applies to an invoice. A vendor
already set on the invoice is authoritative; otherwise the vendor name found
by the parser is matched against the company's active vendors.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from invex.models.invoice import VendorCandidate, VendorTemplateData

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TemplateResolution:
    vendor_id: Optional[str] = None
    template: Optional[VendorTemplateData] = None
    matched_by: Optional[str] = None  # 'vendor_id' or 'name'

    @property
    def found(self) -> bool:
        return self.vendor_id is not None


def _active_template(candidate: VendorCandidate) -> Optional[VendorTemplateData]:
    template = candidate.template
    if template is not None and template.is_active:
        return template
    return None


def names_match(parsed_name: str, vendor_name: str) -> bool:
    """Case-insensitive substring match in either direction"""
    a = parsed_name.strip().lower()
    b = vendor_name.strip().lower()
    if not a or not b:
        return False
    return a in b or b in a


class VendorTemplateResolver:

    def resolve(
        self,
        vendors: Sequence[VendorCandidate],
        vendor_id: Optional[str] = None,
        parsed_vendor_name: Optional[str] = None
    ) -> TemplateResolution:
        """
        Resolve the applicable vendor and template

        Args:
            vendors: The company's active vendors, in the order to try them
            vendor_id: Vendor already assigned to the invoice, if any
            parsed_vendor_name: Vendor name located in the document text

        Returns:
            Resolution with the vendor id and its active template; both None
            when nothing matched. A name match yields the vendor even when it
            has no active template.
        """
        if vendor_id:
            for candidate in vendors:
                if candidate.id == vendor_id:
                    return TemplateResolution(vendor_id, _active_template(candidate), 'vendor_id')
            # Assigned vendor is inactive or unknown here: keep it, no template
            logger.info(f"Assigned vendor {vendor_id} not among active vendors; no template applied")
            return TemplateResolution(vendor_id, None, 'vendor_id')

        if parsed_vendor_name:
            for candidate in vendors:
                if names_match(parsed_vendor_name, candidate.name):
                    logger.info(f"Matched vendor '{candidate.name}' from parsed name '{parsed_vendor_name}'")
                    return TemplateResolution(candidate.id, _active_template(candidate), 'name')

        return TemplateResolution()
