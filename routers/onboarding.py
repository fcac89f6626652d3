from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request

from config import Settings, settings
from schemas import (
    AgeGateIn,
    AgeGateOut,
    OnboardingStatusOut,
    ParentalAttestationIn,
    ParentalAttestationOut,
)
from services.age_gate import AgeThresholds
from services.consent import (
    AttestationContext,
    ConsentRecordManager,
    ParentalAttestationSubmission,
)
from services.onboarding import AgeGateSubmission, OnboardingService
from services.storage import build_store

router = APIRouter(prefix="/v1/onboarding", tags=["onboarding"])


def get_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", settings)


def get_onboarding_service(
    request: Request, cfg: Settings = Depends(get_settings)
) -> OnboardingService:
    # one service per app, built from the same settings the guard uses
    svc = getattr(request.app.state, "onboarding_service", None)
    if svc is None:
        svc = OnboardingService(
            store=build_store(cfg),
            consent_manager=ConsentRecordManager.from_settings(cfg),
            thresholds=AgeThresholds.from_settings(cfg),
        )
        request.app.state.onboarding_service = svc
    return svc


def _client_context(request: Request) -> AttestationContext:
    forwarded = request.headers.get("x-forwarded-for")
    ip: Optional[str] = None
    if forwarded:
        ip = forwarded.split(",")[0].strip() or None
    if ip is None and request.client:
        ip = request.client.host
    return AttestationContext(ip_address=ip, user_agent=request.headers.get("user-agent"))


@router.post("/age-gate")
def submit_age_gate(
    body: AgeGateIn, svc: OnboardingService = Depends(get_onboarding_service)
) -> Dict[str, Any]:
    result = svc.submit_age_gate(
        AgeGateSubmission(
            subject_id=body.user_id,
            birthdate=body.birthdate,
            country_code=body.country_code,
        )
    )
    out = AgeGateOut(
        user_id=result.subject_id,
        calculated_age=result.calculated_age,
        is_under_13=result.is_under_threshold,
        next_step=result.next_step.value,
    )
    return {"data": out.model_dump(by_alias=True)}


@router.post("/parental-attestation")
def submit_parental_attestation(
    body: ParentalAttestationIn,
    request: Request,
    svc: OnboardingService = Depends(get_onboarding_service),
) -> Dict[str, Any]:
    record = svc.submit_attestation(
        ParentalAttestationSubmission(
            subject_id=body.user_id,
            parent_email=body.parent_email,
            parent_full_name=body.parent_full_name,
            relationship_to_child=body.relationship_to_child,
            attestation_accepted=body.attestation_accepted,
        ),
        _client_context(request),
    )
    out = ParentalAttestationOut(
        consent_id=record.consent_id,
        child_user_id=record.subject_id,
        consent_status=record.consent_status,
        consent_method=record.consent_method,
        approved_at=record.issued_at,
        expires_at=record.expires_at,
        policy_version=record.policy_version,
    )
    return {"data": out.model_dump(mode="json", by_alias=True)}


@router.get("/status/{user_id}")
def get_status(
    user_id: str, svc: OnboardingService = Depends(get_onboarding_service)
) -> Dict[str, Any]:
    status = svc.get_status(user_id)
    gate = status.age_gate
    record = status.attestation
    out = OnboardingStatusOut(
        user_id=user_id,
        state=status.state.value,
        access_allowed=status.access_allowed,
        calculated_age=gate.calculated_age if gate else None,
        next_step=gate.next_step.value if gate else None,
        policy_version=record.policy_version if record else None,
        expires_at=record.expires_at if record else None,
    )
    return {"data": out.model_dump(mode="json", by_alias=True)}
