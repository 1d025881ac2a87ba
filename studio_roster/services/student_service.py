from __future__ import annotations

from sqlalchemy.orm import Session

from studio_roster.core.errors import NotFound
from studio_roster.models import Student


def create_student(
    db: Session,
    business_id: int,
    *,
    first_name: str,
    last_name: str = '',
    phone: str = '',
    notes: str = '',
) -> Student:
    if not (first_name or '').strip():
        raise ValueError('first_name is required')
    row = Student(
        business_id=business_id,
        first_name=first_name.strip(),
        last_name=(last_name or '').strip(),
        phone=(phone or '').strip(),
        notes=notes or '',
        is_active=True,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def get_student(db: Session, business_id: int, student_id: int) -> Student:
    row = (
        db.query(Student)
        .filter(Student.business_id == business_id, Student.id == int(student_id))
        .first()
    )
    if not row:
        raise NotFound('Student', student_id)
    return row


def students_by_id(db: Session, business_id: int, student_ids: list[int]) -> dict[int, Student]:
    if not student_ids:
        return {}
    rows = (
        db.query(Student)
        .filter(Student.business_id == business_id, Student.id.in_([int(sid) for sid in student_ids]))
        .all()
    )
    return {int(row.id): row for row in rows}
