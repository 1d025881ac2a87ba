import tempfile
import unittest
from datetime import date, datetime
from pathlib import Path
from unittest.mock import patch
from zoneinfo import ZoneInfo

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from studio_roster.core.errors import AlreadyEnrolled, InvalidState, NotFound
from studio_roster.core.time_provider import TimeProvider
from studio_roster.db import Base
from studio_roster.models import (
    AttendanceRecord,
    Business,
    ClassInstance,
    ClassTemplate,
    Course,
    CourseTemplate,
    Enrollment,
    Student,
    SyncFailureLog,
    TempStudent,
)
from studio_roster.services.attendance_service import mark
from studio_roster.services.business_service import create_business
from studio_roster.services.course_service import create_course
from studio_roster.services.enrollment_service import get_open_enrollment
from studio_roster.services.instance_service import get_or_create_instance
from studio_roster.services.roster_view_service import get_instance_roster
from studio_roster.services.student_service import create_student
from studio_roster.services.temp_student_service import (
    convert_temp_student,
    create_temp_student,
    deactivate_temp_student,
    get_temp_student,
    list_temp_students_for_instance,
    update_temp_student,
)
from studio_roster.services import temp_student_service
from studio_roster.services.template_service import create_template


class FixedTimeProvider(TimeProvider):
    def __init__(self, frozen_dt: datetime):
        self._frozen_dt = frozen_dt

    def now(self) -> datetime:
        return self._frozen_dt


class TempStudentTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_temp_students.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)
        cls.tp = FixedTimeProvider(datetime(2025, 9, 7, 15, 30, tzinfo=ZoneInfo('Asia/Jerusalem')))

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        db = self._session_factory()
        try:
            for table in (
                AttendanceRecord,
                TempStudent,
                SyncFailureLog,
                ClassInstance,
                Enrollment,
                CourseTemplate,
                Course,
                Student,
                ClassTemplate,
                Business,
            ):
                db.query(table).delete()
            db.commit()
            self.business_id = create_business(db, name='Studio Seven', slug='studio-seven').id
            self.template_id = create_template(
                db,
                self.business_id,
                name='Jazz Sun 16:00',
                day_of_week=0,
                start_time='16:00',
                time_provider=self.tp,
            ).id
            self.course_id = create_course(
                db,
                self.business_id,
                name='Jazz Juniors',
                template_ids=[self.template_id],
                start_date=date(2025, 9, 1),
                end_date=date(2025, 12, 28),
                time_provider=self.tp,
            ).id
            self.instance_id = get_or_create_instance(
                db,
                self.business_id,
                self.template_id,
                date(2025, 9, 7),
                time_provider=self.tp,
            ).id
        finally:
            db.close()

    def test_create_list_update_and_deactivate(self):
        db = self._session_factory()
        try:
            first = create_temp_student(db, self.business_id, self.instance_id, name='  Maya Levi ', phone='050-1234567', time_provider=self.tp)
            second = create_temp_student(db, self.business_id, self.instance_id, name='Omer', time_provider=self.tp)
            self.assertEqual(first.name, 'Maya Levi')
            self.assertEqual(first.template_id, self.template_id)
            self.assertEqual(
                [row.id for row in list_temp_students_for_instance(db, self.business_id, self.instance_id)],
                [first.id, second.id],
            )

            updated = update_temp_student(db, self.business_id, second.id, {'phone': '052-7654321', 'notes': 'sister of Maya'})
            self.assertEqual(updated.phone, '052-7654321')
            self.assertEqual(updated.name, 'Omer')
            with self.assertRaises(ValueError):
                update_temp_student(db, self.business_id, second.id, {'name': '   '})

            deactivate_temp_student(db, self.business_id, first.id)
            self.assertEqual(
                [row.id for row in list_temp_students_for_instance(db, self.business_id, self.instance_id)],
                [second.id],
            )
        finally:
            db.close()

    def test_name_is_required_and_instance_must_exist(self):
        db = self._session_factory()
        try:
            with self.assertRaises(ValueError):
                create_temp_student(db, self.business_id, self.instance_id, name='', time_provider=self.tp)
            with self.assertRaises(NotFound):
                create_temp_student(db, self.business_id, 55555, name='Ghost', time_provider=self.tp)
            with self.assertRaises(NotFound):
                get_temp_student(db, self.business_id, 55555)
        finally:
            db.close()

    def test_convert_creates_student_and_enrolls(self):
        db = self._session_factory()
        try:
            temp = create_temp_student(db, self.business_id, self.instance_id, name='Maya Bat Levi', phone='050-1', time_provider=self.tp)
            student = convert_temp_student(
                db,
                self.business_id,
                temp.id,
                course_id=self.course_id,
                effective_from=date(2025, 9, 7),
                time_provider=self.tp,
            )
            self.assertEqual(student.first_name, 'Maya')
            self.assertEqual(student.last_name, 'Bat Levi')
            self.assertEqual(student.phone, '050-1')
            self.assertIsNotNone(get_open_enrollment(db, self.business_id, self.course_id, student.id))

            db.expire_all()
            converted = get_temp_student(db, self.business_id, temp.id)
            self.assertFalse(converted.active)
            self.assertEqual(converted.converted_student_id, student.id)
            self.assertIn(student.id, db.get(ClassInstance, self.instance_id).student_ids)

            with self.assertRaises(InvalidState):
                convert_temp_student(db, self.business_id, temp.id, time_provider=self.tp)
        finally:
            db.close()

    def test_convert_into_unknown_course_creates_no_student(self):
        db = self._session_factory()
        try:
            temp = create_temp_student(db, self.business_id, self.instance_id, name='Noa Peretz', time_provider=self.tp)
            before = db.query(Student).count()
            for _ in range(2):
                with self.assertRaises(NotFound):
                    convert_temp_student(db, self.business_id, temp.id, course_id=99999, time_provider=self.tp)
            self.assertEqual(db.query(Student).count(), before)

            db.expire_all()
            untouched = get_temp_student(db, self.business_id, temp.id)
            self.assertTrue(untouched.active)
            self.assertIsNone(untouched.converted_student_id)
        finally:
            db.close()

    def test_failed_enrollment_removes_the_new_student(self):
        db = self._session_factory()
        try:
            temp = create_temp_student(db, self.business_id, self.instance_id, name='Lior', time_provider=self.tp)
            before = db.query(Student).count()
            with patch.object(
                temp_student_service,
                'enroll_and_sync',
                side_effect=AlreadyEnrolled('Student is already enrolled in this course'),
            ):
                with self.assertRaises(AlreadyEnrolled):
                    convert_temp_student(db, self.business_id, temp.id, course_id=self.course_id, time_provider=self.tp)
            self.assertEqual(db.query(Student).count(), before)
            self.assertIsNone(get_temp_student(db, self.business_id, temp.id).converted_student_id)
        finally:
            db.close()

    def test_roster_lists_enrolled_then_walk_ins_with_status(self):
        db = self._session_factory()
        try:
            dana = create_student(db, self.business_id, first_name='Dana', last_name='Cohen')
            db.get(ClassInstance, self.instance_id).student_ids = [dana.id]
            db.commit()
            walk_in = create_temp_student(db, self.business_id, self.instance_id, name='Guest Kid', time_provider=self.tp)
            mark(db, self.business_id, self.instance_id, walk_in.id, 'late', is_temp=True, time_provider=self.tp)

            roster = get_instance_roster(db, self.business_id, self.instance_id, time_provider=self.tp)
            self.assertEqual(roster['date'], '2025-09-07')
            self.assertEqual(
                [(entry['name'], entry['is_temp'], entry['attendance_status']) for entry in roster['students']],
                [('Dana Cohen', False, 'none'), ('Guest Kid', True, 'late')],
            )
        finally:
            db.close()


if __name__ == '__main__':
    unittest.main()
