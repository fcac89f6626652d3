from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Callable, Optional, Union

from errors import AgeGateRequired, ConsentNotRequired
from services.age_gate import AgeGateResult, AgeThresholds, NextStep, evaluate
from services.consent import (
    AttestationContext,
    ConsentRecordManager,
    ParentalAttestationRecord,
    ParentalAttestationSubmission,
    current_valid_record,
)
from services.storage import OnboardingStore

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OnboardingState(str, Enum):
    UNVERIFIED = "unverified"
    DIRECT_ACCESS_GRANTED = "direct_access_granted"
    PENDING_PARENT_CONSENT = "pending_parent_consent"
    CONSENTED = "consented"


@dataclass(frozen=True)
class AgeGateSubmission:
    subject_id: str
    birthdate: Union[str, date, None]
    country_code: Optional[str]


@dataclass(frozen=True)
class OnboardingStatus:
    subject_id: str
    state: OnboardingState
    age_gate: Optional[AgeGateResult] = None
    attestation: Optional[ParentalAttestationRecord] = None

    @property
    def access_allowed(self) -> bool:
        return self.state in (OnboardingState.DIRECT_ACCESS_GRANTED, OnboardingState.CONSENTED)


def derive_state(
    age_gate: Optional[AgeGateResult], attestation: Optional[ParentalAttestationRecord]
) -> OnboardingState:
    if age_gate is None:
        return OnboardingState.UNVERIFIED
    if age_gate.next_step is NextStep.DIRECT_ACCESS:
        return OnboardingState.DIRECT_ACCESS_GRANTED
    if attestation is not None:
        return OnboardingState.CONSENTED
    return OnboardingState.PENDING_PARENT_CONSENT


class OnboardingService:
    """
    Entry point for the age gate and parental consent flow.

    Holds no per-subject state: every status is recomputed from the latest
    stored age-gate result and the stored attestation log.
    """

    def __init__(
        self,
        store: OnboardingStore,
        consent_manager: ConsentRecordManager,
        thresholds: Optional[AgeThresholds] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.consent_manager = consent_manager
        self.thresholds = thresholds or AgeThresholds()
        self.clock = clock

    def submit_age_gate(self, submission: AgeGateSubmission) -> AgeGateResult:
        result = evaluate(
            submission.birthdate,
            submission.country_code,
            self.clock(),
            subject_id=submission.subject_id,
            thresholds=self.thresholds,
        )
        # Resubmission overwrites; a wrong birthdate is never locked in.
        self.store.upsert_age_gate(result)
        logger.info(
            "age gate subject=%s country=%s age=%s next_step=%s",
            result.subject_id,
            result.country_code,
            result.calculated_age,
            result.next_step.value,
        )
        return result

    def submit_attestation(
        self,
        submission: ParentalAttestationSubmission,
        context: Optional[AttestationContext] = None,
    ) -> ParentalAttestationRecord:
        age_gate = self.store.get_age_gate(submission.subject_id)
        if age_gate is None:
            raise AgeGateRequired("Age gate must be completed before parental consent.")
        if age_gate.next_step is not NextStep.PARENT_CONSENT_REQUIRED:
            raise ConsentNotRequired("Parental consent is only required for under-age users.")

        record = self.consent_manager.submit_attestation(submission, self.clock(), context)
        self.store.append_attestation(record)
        return record

    def get_status(self, subject_id: str) -> OnboardingStatus:
        now = self.clock()
        age_gate = self.store.get_age_gate(subject_id)
        record = None
        if age_gate is not None and age_gate.next_step is NextStep.PARENT_CONSENT_REQUIRED:
            record = current_valid_record(self.store.list_attestations(subject_id), now)
        return OnboardingStatus(
            subject_id=subject_id,
            state=derive_state(age_gate, record),
            age_gate=age_gate,
            attestation=record,
        )

    def is_attestation_valid(
        self, record: ParentalAttestationRecord, now: Optional[datetime] = None
    ) -> bool:
        return self.consent_manager.is_attestation_valid(record, now or self.clock())
