from __future__ import annotations

from conftest import add_person, add_rule

from ticketing.services.approval_authority import (
    ApprovalAuthorityResolver,
    LocationDescriptor,
    scope_matches,
)

LOCATION = LocationDescriptor("PLT1", "ASM", "L01", "M07")


def test_location_from_composite_code() -> None:
    location = LocationDescriptor.from_code("PLT1-ASM-L01-M07-A")
    assert location.as_tuple() == ("PLT1", "ASM", "L01", "M07-A")

    partial = LocationDescriptor.from_code("PLT1-ASM")
    assert partial.as_tuple() == ("PLT1", "ASM", None, None)


def test_blank_parts_are_treated_as_unset() -> None:
    location = LocationDescriptor("PLT1", " ", "", None)
    assert location.as_tuple() == ("PLT1", None, None, None)


def test_contiguity() -> None:
    assert LocationDescriptor("PLT1", "ASM").is_contiguous
    assert LocationDescriptor().is_contiguous
    assert not LocationDescriptor("PLT1", None, "L01").is_contiguous


def test_scope_prefix_matching() -> None:
    assert scope_matches(LocationDescriptor("PLT1"), LOCATION)
    assert scope_matches(LocationDescriptor("PLT1", "ASM", "L01"), LOCATION)
    assert scope_matches(LocationDescriptor(), LOCATION)
    assert not scope_matches(LocationDescriptor("PLT1", "ASM", "L02"), LOCATION)
    assert not scope_matches(LocationDescriptor("PLT2"), LOCATION)
    # A narrower rule does not cover a broader ticket location.
    assert not scope_matches(LocationDescriptor("PLT1", "ASM", "L01"), LocationDescriptor("PLT1", "ASM"))


def test_plant_rule_authorizes_any_location_under_plant(db) -> None:
    add_person(db, 202)
    add_rule(db, 202, 2, plant="PLT1")
    resolver = ApprovalAuthorityResolver(db)

    assert resolver.is_authorized(202, 2, LOCATION)
    assert resolver.is_authorized(202, 2, LocationDescriptor("PLT1", "PAINT"))
    assert not resolver.is_authorized(202, 2, LocationDescriptor("PLT2", "ASM"))


def test_no_rules_means_not_authorized(db) -> None:
    add_person(db, 202)
    add_rule(db, 202, 3, plant="PLT1")
    resolver = ApprovalAuthorityResolver(db)

    assert not resolver.is_authorized(202, 2, LOCATION)
    assert not resolver.is_authorized(999, 2, LOCATION)


def test_inactive_rules_and_persons_never_match(db) -> None:
    add_person(db, 202)
    add_person(db, 203, is_active=False)
    add_rule(db, 202, 2, plant="PLT1", is_active=False)
    add_rule(db, 203, 2, plant="PLT1")
    resolver = ApprovalAuthorityResolver(db)

    assert not resolver.is_authorized(202, 2, LOCATION)
    assert not resolver.is_authorized(203, 2, LOCATION)


def test_empty_scope_matches_every_location(db) -> None:
    add_person(db, 401)
    add_rule(db, 401, 4)
    resolver = ApprovalAuthorityResolver(db)

    assert resolver.is_authorized(401, 4, LOCATION)
    assert resolver.is_authorized(401, 4, LocationDescriptor("PLT9"))


def test_overlapping_rules_union_into_one_decision(db) -> None:
    add_person(db, 301)
    add_rule(db, 301, 3, plant="PLT1", area="ASM", line="L02")
    add_rule(db, 301, 3, plant="PLT1", area="ASM", line="L01")
    add_rule(db, 301, 3, plant="PLT1", area="ASM")
    resolver = ApprovalAuthorityResolver(db)

    assert resolver.is_authorized(301, 3, LOCATION)
    assert resolver.is_authorized(301, 3, LocationDescriptor("PLT1", "ASM", "L09"))


def test_is_authorized_any_checks_each_level(db) -> None:
    add_person(db, 401)
    add_rule(db, 401, 4, plant="PLT1")
    resolver = ApprovalAuthorityResolver(db)

    assert resolver.is_authorized_any(401, (3, 4), LOCATION)
    assert not resolver.is_authorized_any(401, (2, 3), LOCATION)
    assert not resolver.is_authorized_any(401, (), LOCATION)


def test_list_authorized_persons_is_deduplicated_and_sorted(db) -> None:
    for person_id in (305, 301, 302, 303):
        add_person(db, person_id)
    add_rule(db, 305, 3, plant="PLT1")
    add_rule(db, 301, 3, plant="PLT1", area="ASM")
    add_rule(db, 301, 3, plant="PLT1", area="ASM", line="L01")
    add_rule(db, 302, 3, plant="PLT1", area="PAINT")
    add_rule(db, 303, 2, plant="PLT1")
    resolver = ApprovalAuthorityResolver(db)

    assert resolver.list_authorized_persons(3, LOCATION) == [301, 305]


def test_authorized_levels(db) -> None:
    add_person(db, 401)
    add_rule(db, 401, 3, plant="PLT1", area="ASM")
    add_rule(db, 401, 4, plant="PLT1")
    add_rule(db, 401, 2, plant="PLT2")
    resolver = ApprovalAuthorityResolver(db)

    assert resolver.authorized_levels(401, LOCATION) == {3, 4}
