from __future__ import annotations

import ipaddress
import logging
import re
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Iterable, Optional

from errors import AttestationNotAccepted, AttestationValidationError

logger = logging.getLogger(__name__)

CONSENT_STATUS_APPROVED = "approved"
CONSENT_METHOD_INTERIM = "interim_attestation"

INTERIM_ATTESTATION_TEXT = (
    "By checking this box and typing my full legal name, I certify that I am "
    "the child's legal parent or guardian and I consent to the child's use of "
    "the service under these Terms and Privacy Policy."
)

EMAIL_MAX_LENGTH = 320
FULL_NAME_LENGTH = (3, 120)
RELATIONSHIP_LENGTH = (2, 60)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@.]+(\.[^\s@.]+)+$")


@dataclass(frozen=True)
class ParentalAttestationSubmission:
    subject_id: str
    parent_email: str
    parent_full_name: str
    relationship_to_child: str
    attestation_accepted: bool


@dataclass(frozen=True)
class AttestationContext:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class ParentalAttestationRecord:
    consent_id: str
    subject_id: str
    parent_email: str
    parent_full_name: str
    relationship_to_child: str
    policy_version: str
    issued_at: datetime
    expires_at: datetime
    consent_status: str = CONSENT_STATUS_APPROVED
    consent_method: str = CONSENT_METHOD_INTERIM
    attestation_text: str = INTERIM_ATTESTATION_TEXT
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


def normalize_ip_address(candidate: Optional[str]) -> Optional[str]:
    if not candidate:
        return None
    candidate = candidate.strip()
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return None


def is_attestation_valid(record: ParentalAttestationRecord, now: datetime) -> bool:
    return now < record.expires_at


def current_valid_record(
    records: Iterable[ParentalAttestationRecord], now: datetime
) -> Optional[ParentalAttestationRecord]:
    """Most recently issued record that has not expired at `now`."""
    live = [r for r in records if is_attestation_valid(r, now)]
    if not live:
        return None
    return max(live, key=lambda r: r.issued_at)


def _check_length(field: str, label: str, value: str, bounds: tuple[int, int]) -> None:
    lo, hi = bounds
    if len(value) < lo:
        raise AttestationValidationError(field, f"{label} must be at least {lo} characters.")
    if len(value) > hi:
        raise AttestationValidationError(field, f"{label} must be at most {hi} characters.")


class ConsentRecordManager:
    """
    Validates parental attestations and issues immutable consent records.

    The manager does not persist anything: callers hand the returned record
    to storage. Each accepted submission yields a brand-new record.
    """

    def __init__(
        self,
        policy_version: str,
        validity: timedelta,
        attestation_text: str = INTERIM_ATTESTATION_TEXT,
    ) -> None:
        if not policy_version:
            raise ValueError("policy_version must be non-empty")
        if validity <= timedelta(0):
            raise ValueError("validity must be positive")
        self.policy_version = policy_version
        self.validity = validity
        self.attestation_text = attestation_text

    @classmethod
    def from_settings(cls, s) -> "ConsentRecordManager":
        return cls(
            policy_version=s.consent_policy_version,
            validity=timedelta(days=s.consent_validity_days),
        )

    def validate(self, submission: ParentalAttestationSubmission) -> ParentalAttestationSubmission:
        # Refusal is reported before any field problem.
        if submission.attestation_accepted is not True:
            raise AttestationNotAccepted()

        email = (submission.parent_email or "").strip()
        if len(email) > EMAIL_MAX_LENGTH or not _EMAIL_RE.match(email):
            raise AttestationValidationError("parentEmail", "Enter a valid parent email address.")

        full_name = (submission.parent_full_name or "").strip()
        _check_length("parentFullName", "Parent full name", full_name, FULL_NAME_LENGTH)

        relationship = (submission.relationship_to_child or "").strip()
        _check_length("relationshipToChild", "Relationship", relationship, RELATIONSHIP_LENGTH)

        return replace(
            submission,
            parent_email=email.lower(),
            parent_full_name=full_name,
            relationship_to_child=relationship,
        )

    def submit_attestation(
        self,
        submission: ParentalAttestationSubmission,
        now: datetime,
        context: Optional[AttestationContext] = None,
    ) -> ParentalAttestationRecord:
        clean = self.validate(submission)
        ctx = context or AttestationContext()
        record = ParentalAttestationRecord(
            consent_id=uuid.uuid4().hex,
            subject_id=clean.subject_id,
            parent_email=clean.parent_email,
            parent_full_name=clean.parent_full_name,
            relationship_to_child=clean.relationship_to_child,
            policy_version=self.policy_version,
            issued_at=now,
            expires_at=now + self.validity,
            attestation_text=self.attestation_text,
            ip_address=normalize_ip_address(ctx.ip_address),
            user_agent=ctx.user_agent,
        )
        logger.info(
            "attestation issued subject=%s policy=%s expires_at=%s",
            record.subject_id,
            record.policy_version,
            record.expires_at.isoformat(),
        )
        return record

    def is_attestation_valid(self, record: ParentalAttestationRecord, now: datetime) -> bool:
        return is_attestation_valid(record, now)
