"""Seed database with demo persons and approval rules."""
from ticketing.database import SessionLocal
from ticketing.models import ApprovalRule, Person


# Person ids mirror Cedar PERSONNO values.
PERSONS = [
    {'id': 101, 'username': 'reporter', 'display_name': 'Line Operator', 'department_no': 10},
    {'id': 201, 'username': 'tech', 'display_name': 'Maintenance Technician', 'department_no': 20},
    {'id': 202, 'username': 'supervisor', 'display_name': 'Line Supervisor', 'department_no': 20},
    {'id': 301, 'username': 'engineer', 'display_name': 'Maintenance Engineer', 'department_no': 20},
    {'id': 401, 'username': 'manager', 'display_name': 'Plant Maintenance Manager', 'department_no': 20},
]

RULES = [
    # L2 over one line, L3 over the area, L4 plant-wide.
    {'person_id': 202, 'approval_level': 2, 'plant_code': 'PLT1', 'area_code': 'ASM', 'line_code': 'L01'},
    {'person_id': 301, 'approval_level': 3, 'plant_code': 'PLT1', 'area_code': 'ASM'},
    {'person_id': 401, 'approval_level': 4, 'plant_code': 'PLT1'},
    {'person_id': 401, 'approval_level': 3, 'plant_code': 'PLT1'},
]


def seed():
    """Seed database with demo data (idempotent on person ids)."""
    db = SessionLocal()

    try:
        for person_data in PERSONS:
            if db.get(Person, person_data['id']) is None:
                db.add(Person(**person_data))
        db.flush()

        if db.query(ApprovalRule).count() == 0:
            for rule_data in RULES:
                db.add(ApprovalRule(is_active=True, **rule_data))

        db.commit()
        print("✅ Database seeded successfully!")
        print("\nDemo persons (send as X-Person-Id):")
        for person_data in PERSONS:
            print(f"  {person_data['id']} {person_data['username']} ({person_data['display_name']})")

    except Exception as e:
        db.rollback()
        print(f"❌ Error seeding database: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
