"""Approval rule administration (grant / revoke authority over a location scope)."""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from ..domain_errors import DomainError, NotFound, ValidationFailed
from ..models import ApprovalRule, Person
from ..schemas import ApprovalRuleCreate
from ..services.approval_authority import LocationDescriptor

logger = logging.getLogger(__name__)


def grant_approval_rule_use_case(*, db: Session, data: ApprovalRuleCreate) -> ApprovalRule:
    person = db.query(Person).filter(Person.id == data.person_id).first()
    if not person:
        raise NotFound("Person not found", code="PERSON_NOT_FOUND", details={"person_id": data.person_id})

    scope = LocationDescriptor(data.plant_code, data.area_code, data.line_code, data.machine_code)
    if not scope.is_contiguous:
        raise ValidationFailed(
            "Approval scope may not skip hierarchy levels",
            code="APPROVAL_SCOPE_INVALID",
            details=scope.as_dict(),
        )

    query = db.query(ApprovalRule).filter(
        ApprovalRule.person_id == data.person_id,
        ApprovalRule.approval_level == data.approval_level,
        ApprovalRule.is_active.is_(True),
    )
    for name, value in scope.as_dict().items():
        column = getattr(ApprovalRule, name)
        query = query.filter(column.is_(None) if value is None else column == value)
    if query.first():
        raise DomainError(
            code="APPROVAL_RULE_DUPLICATE",
            http_status=409,
            message="An identical active approval rule already exists",
            details={"person_id": data.person_id, "approval_level": data.approval_level, **scope.as_dict()},
        )

    rule = ApprovalRule(
        person_id=data.person_id,
        approval_level=data.approval_level,
        is_active=True,
        **scope.as_dict(),
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    logger.info(
        "approval.granted rule=%s person=%s level=%s scope=%s",
        rule.id,
        rule.person_id,
        rule.approval_level,
        scope.as_tuple(),
    )
    return rule


def revoke_approval_rule_use_case(*, db: Session, rule_id: int) -> ApprovalRule:
    """Deactivate a rule; already inactive rules are returned unchanged."""
    rule = db.query(ApprovalRule).filter(ApprovalRule.id == rule_id).first()
    if not rule:
        raise NotFound("Approval rule not found", code="APPROVAL_RULE_NOT_FOUND", details={"rule_id": rule_id})
    if not rule.is_active:
        return rule

    rule.is_active = False
    db.commit()
    db.refresh(rule)
    logger.info("approval.revoked rule=%s person=%s", rule.id, rule.person_id)
    return rule
