"""
Document checklist rules (``placement_kernel.domain.documents``).

Pure lists of the paperwork each kind of placement needs.  Tenant document
templates (per stage) are stored in the database; the names here are the
fixed requirements and the transfer steps added to a reassignment.
"""

from __future__ import annotations

from enum import Enum

from placement_kernel.domain.lifecycle import ApplicationType


class DocumentStatus(str, Enum):
    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class RequiredFrom(str, Enum):
    OFFICE = "office"
    CLIENT = "client"
    CANDIDATE = "candidate"


NEW_CANDIDATE_DOCUMENTS: tuple[str, ...] = (
    "Passport Copy",
    "Medical Certificate",
    "Criminal Record",
    "Educational Certificates",
    "Work Experience Letters",
    "MoL Pre-Authorization",
    "Visa Application",
    "Labour Permit",
    "Residency Permit",
)

GUARANTOR_CHANGE_DOCUMENTS: tuple[str, ...] = (
    "Relinquish Letter",
    "Commitment Letter",
    "Transfer of Sponsorship",
    "Certificate of Deposit",
)

PERMIT_DOCUMENTS: tuple[str, ...] = (
    "Labour Permit",
    "Residency Permit",
)

# Added to a reassignment whose permits carry over from the prior sponsor.
TRANSFER_STEPS: tuple[str, ...] = (
    "Transfer of Sponsorship",
    "Relinquish Letter from Previous Client",
    "Commitment Letter from New Client",
    "Certificate of Deposit from New Client",
)


def document_requirements(
    application_type: ApplicationType | str,
    has_existing_paperwork: bool = False,
) -> tuple[str, ...]:
    """Documents a placement of the given type must collect."""
    match ApplicationType(application_type):
        case ApplicationType.NEW_CANDIDATE:
            return NEW_CANDIDATE_DOCUMENTS
        case ApplicationType.GUARANTOR_CHANGE:
            if has_existing_paperwork:
                return GUARANTOR_CHANGE_DOCUMENTS
            return GUARANTOR_CHANGE_DOCUMENTS + PERMIT_DOCUMENTS
