"""Approval authority endpoints."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from ..dependencies import get_actor_id
from ..schemas import (
    ApprovalRuleCreate,
    ApprovalRuleResponse,
    AuthorizationCheckResponse,
    AuthorizedPersonsResponse,
)
from ..services.approval_authority import ApprovalAuthorityResolver, LocationDescriptor
from ..use_cases.approval_rules import grant_approval_rule_use_case, revoke_approval_rule_use_case

router = APIRouter(prefix="/approvals", tags=["approvals"])


def _location(
    location_code: Optional[str] = Query(None),
    plant_code: Optional[str] = Query(None),
    area_code: Optional[str] = Query(None),
    line_code: Optional[str] = Query(None),
    machine_code: Optional[str] = Query(None),
) -> LocationDescriptor:
    if location_code:
        return LocationDescriptor.from_code(location_code, separator=settings.LOCATION_CODE_SEPARATOR)
    return LocationDescriptor(plant_code, area_code, line_code, machine_code)


@router.get("/check", response_model=AuthorizationCheckResponse)
def check_authorization(
    person_id: int,
    approval_level: int = Query(..., ge=2, le=4),
    location: LocationDescriptor = Depends(_location),
    db: Session = Depends(get_db),
):
    authorized = ApprovalAuthorityResolver(db).is_authorized(person_id, approval_level, location)
    return AuthorizationCheckResponse(person_id=person_id, approval_level=approval_level, authorized=authorized)


@router.get("/authorized-persons", response_model=AuthorizedPersonsResponse)
def list_authorized_persons(
    approval_level: int = Query(..., ge=2, le=4),
    location: LocationDescriptor = Depends(_location),
    db: Session = Depends(get_db),
):
    person_ids = ApprovalAuthorityResolver(db).list_authorized_persons(approval_level, location)
    return AuthorizedPersonsResponse(approval_level=approval_level, person_ids=person_ids)


@router.post("/rules", response_model=ApprovalRuleResponse, status_code=status.HTTP_201_CREATED)
def grant_approval_rule(
    data: ApprovalRuleCreate,
    db: Session = Depends(get_db),
    _actor_id: int = Depends(get_actor_id),
):
    return grant_approval_rule_use_case(db=db, data=data)


@router.delete("/rules/{rule_id}", response_model=ApprovalRuleResponse)
def revoke_approval_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    _actor_id: int = Depends(get_actor_id),
):
    return revoke_approval_rule_use_case(db=db, rule_id=rule_id)
