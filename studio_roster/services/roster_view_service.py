from __future__ import annotations

from sqlalchemy.orm import Session

from studio_roster.core.time_provider import TimeProvider, default_time_provider
from studio_roster.models import AttendanceRecord, AttendanceStatus
from studio_roster.services.instance_freshness_service import ensure_fresh
from studio_roster.services.student_service import students_by_id
from studio_roster.services.temp_student_service import list_temp_students_for_instance


def get_instance_roster(
    db: Session,
    business_id: int,
    instance_id: int,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    """Roster shown on the attendance page: enrolled students first, then walk-ins."""
    instance = ensure_fresh(db, business_id, instance_id, time_provider=time_provider)
    records = (
        db.query(AttendanceRecord)
        .filter(AttendanceRecord.business_id == business_id, AttendanceRecord.instance_id == instance.id)
        .all()
    )
    status_by_key = {(bool(record.is_temp), int(record.student_id)): record.status for record in records}

    student_ids = [int(sid) for sid in (instance.student_ids or [])]
    known = students_by_id(db, business_id, student_ids)
    entries: list[dict] = []
    for student_id in student_ids:
        student = known.get(student_id)
        if student is None:
            continue
        entries.append(
            {
                'student_id': student_id,
                'name': student.full_name,
                'phone': student.phone,
                'is_temp': False,
                'attendance_status': status_by_key.get((False, student_id), AttendanceStatus.NONE.value),
            }
        )
    for temp in list_temp_students_for_instance(db, business_id, instance.id):
        entries.append(
            {
                'student_id': int(temp.id),
                'name': temp.name,
                'phone': temp.phone,
                'is_temp': True,
                'attendance_status': status_by_key.get((True, int(temp.id)), AttendanceStatus.NONE.value),
            }
        )
    return {
        'instance_id': instance.id,
        'template_id': instance.template_id,
        'name': instance.name,
        'date': instance.instance_date.isoformat(),
        'start_time': instance.start_time,
        'status': instance.status,
        'is_modified': bool(instance.is_modified),
        'students': entries,
    }
