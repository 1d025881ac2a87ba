import tempfile
import unittest
from datetime import date, datetime
from pathlib import Path
from unittest.mock import patch
from zoneinfo import ZoneInfo

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from studio_roster.core.errors import AlreadyEnrolled
from studio_roster.core.time_provider import TimeProvider
from studio_roster.db import Base
from studio_roster.models import (
    Business,
    ClassInstance,
    ClassTemplate,
    Course,
    CourseTemplate,
    Enrollment,
    Student,
    SyncFailureLog,
)
import studio_roster.services.enrollment_sync_service as sync_module
from studio_roster.services.business_service import create_business
from studio_roster.services.course_service import create_course
from studio_roster.services.enrollment_sync_service import (
    enroll_and_sync,
    sync_enrollment_to_instances,
    unenroll_and_sync,
)
from studio_roster.services.instance_service import batch_generate_instances, get_or_create_instance, update_instance
from studio_roster.services.student_service import create_student
from studio_roster.services.template_service import create_template


class FixedTimeProvider(TimeProvider):
    def __init__(self, frozen_dt: datetime):
        self._frozen_dt = frozen_dt

    def now(self) -> datetime:
        return self._frozen_dt


class EnrollmentSyncTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_enrollment_sync.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)
        cls.tp = FixedTimeProvider(datetime(2025, 8, 28, 8, 0, tzinfo=ZoneInfo('Asia/Jerusalem')))

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        db = self._session_factory()
        try:
            for table in (SyncFailureLog, ClassInstance, Enrollment, CourseTemplate, Course, Student, ClassTemplate, Business):
                db.query(table).delete()
            db.commit()
            self.business_id = create_business(db, name='Studio Five', slug='studio-five').id
            self.template_id = create_template(
                db,
                self.business_id,
                name='Ballet Mon 17:00',
                day_of_week=1,
                start_time='17:00',
                time_provider=self.tp,
            ).id
            self.course_id = create_course(
                db,
                self.business_id,
                name='Ballet Autumn',
                template_ids=[self.template_id],
                start_date=date(2025, 9, 1),
                end_date=date(2025, 12, 1),
                time_provider=self.tp,
            ).id
            self.student_id = create_student(db, self.business_id, first_name='Tamar').id
            rows = batch_generate_instances(
                db,
                self.business_id,
                self.template_id,
                date(2025, 9, 1),
                date(2025, 9, 15),
                time_provider=self.tp,
            )
            self.instance_ids = [row.id for row in rows]
        finally:
            db.close()

    def _roster(self, db, instance_id):
        db.expire_all()
        return list(db.get(ClassInstance, instance_id).student_ids or [])

    def test_enroll_pushes_into_instances_from_effective_date(self):
        db = self._session_factory()
        try:
            enrollment, summary = enroll_and_sync(
                db,
                self.business_id,
                self.course_id,
                self.student_id,
                date(2025, 9, 8),
                time_provider=self.tp,
            )
            self.assertEqual(enrollment.effective_from, date(2025, 9, 8))
            self.assertEqual(summary, {'updated': 2, 'already_done': 0, 'failed': 0, 'errors': []})
            sep_1, sep_8, sep_15 = self.instance_ids
            self.assertEqual(self._roster(db, sep_1), [])
            self.assertEqual(self._roster(db, sep_8), [self.student_id])
            self.assertEqual(self._roster(db, sep_15), [self.student_id])
            self.assertFalse(db.get(ClassInstance, sep_8).is_modified)
        finally:
            db.close()

    def test_repeated_push_reports_already_done(self):
        db = self._session_factory()
        try:
            enroll_and_sync(db, self.business_id, self.course_id, self.student_id, date(2025, 9, 1), time_provider=self.tp)
            summary = sync_enrollment_to_instances(
                db,
                self.business_id,
                self.course_id,
                self.student_id,
                date(2025, 9, 1),
                'add',
                time_provider=self.tp,
            )
            self.assertEqual(summary['updated'], 0)
            self.assertEqual(summary['already_done'], 3)
        finally:
            db.close()

    def test_unenroll_removes_student_after_last_day(self):
        db = self._session_factory()
        try:
            enroll_and_sync(db, self.business_id, self.course_id, self.student_id, date(2025, 9, 1), time_provider=self.tp)
            enrollment, summary = unenroll_and_sync(
                db,
                self.business_id,
                self.course_id,
                self.student_id,
                date(2025, 9, 8),
                time_provider=self.tp,
            )
            self.assertEqual(enrollment.status, 'completed')
            self.assertEqual(summary['updated'], 1)
            sep_1, sep_8, sep_15 = self.instance_ids
            self.assertEqual(self._roster(db, sep_8), [self.student_id])
            self.assertEqual(self._roster(db, sep_15), [])
        finally:
            db.close()

    def test_one_failing_instance_does_not_stop_the_batch(self):
        db = self._session_factory()
        try:
            failing_id = self.instance_ids[1]
            real_push = sync_module.add_student_to_instance

            def flaky_push(db_arg, business_id, instance_id, student_id, **kwargs):
                if instance_id == failing_id:
                    raise RuntimeError('write rejected')
                return real_push(db_arg, business_id, instance_id, student_id, **kwargs)

            with patch.object(sync_module, 'add_student_to_instance', side_effect=flaky_push):
                _, summary = enroll_and_sync(
                    db,
                    self.business_id,
                    self.course_id,
                    self.student_id,
                    date(2025, 9, 1),
                    time_provider=self.tp,
                )

            self.assertEqual(summary['updated'], 2)
            self.assertEqual(summary['failed'], 1)
            self.assertEqual(summary['errors'], [{'instance_id': failing_id, 'error': 'write rejected'}])
            self.assertEqual(self._roster(db, self.instance_ids[0]), [self.student_id])
            self.assertEqual(self._roster(db, failing_id), [])
            self.assertEqual(self._roster(db, self.instance_ids[2]), [self.student_id])

            failures = db.query(SyncFailureLog).all()
            self.assertEqual(len(failures), 1)
            self.assertEqual(failures[0].operation, 'enrollment_sync_add')
            self.assertEqual(failures[0].entity_id, failing_id)
            self.assertEqual(db.query(Enrollment).count(), 1)
        finally:
            db.close()

    def test_ledger_error_propagates_before_any_push(self):
        db = self._session_factory()
        try:
            enroll_and_sync(db, self.business_id, self.course_id, self.student_id, date(2025, 9, 1), time_provider=self.tp)
            with patch.object(sync_module, 'sync_enrollment_to_instances') as push:
                with self.assertRaises(AlreadyEnrolled):
                    enroll_and_sync(
                        db,
                        self.business_id,
                        self.course_id,
                        self.student_id,
                        date(2025, 9, 8),
                        time_provider=self.tp,
                    )
                push.assert_not_called()
        finally:
            db.close()

    def test_push_stays_inside_course_window(self):
        db = self._session_factory()
        try:
            # Dec 8 falls after the course ends on Dec 1.
            after_end = get_or_create_instance(db, self.business_id, self.template_id, date(2025, 12, 8), time_provider=self.tp)
            update_instance(db, self.business_id, after_end.id, {'notes': 'Holiday showcase'}, time_provider=self.tp)

            _, summary = enroll_and_sync(
                db,
                self.business_id,
                self.course_id,
                self.student_id,
                date(2025, 9, 1),
                time_provider=self.tp,
            )
            self.assertEqual(summary['updated'], 3)
            self.assertEqual(self._roster(db, after_end.id), [])
        finally:
            db.close()

    def test_removal_keeps_student_enrolled_through_another_course(self):
        db = self._session_factory()
        try:
            other_course_id = create_course(
                db,
                self.business_id,
                name='Ballet Autumn Extra',
                template_ids=[self.template_id],
                start_date=date(2025, 9, 1),
                end_date=date(2025, 12, 1),
                time_provider=self.tp,
            ).id
            enroll_and_sync(db, self.business_id, self.course_id, self.student_id, date(2025, 9, 1), time_provider=self.tp)
            enroll_and_sync(db, self.business_id, other_course_id, self.student_id, date(2025, 9, 1), time_provider=self.tp)
            sep_15 = self.instance_ids[2]
            update_instance(db, self.business_id, sep_15, {'notes': 'Substitute teacher'}, time_provider=self.tp)

            _, summary = unenroll_and_sync(
                db,
                self.business_id,
                self.course_id,
                self.student_id,
                date(2025, 9, 8),
                time_provider=self.tp,
            )
            self.assertEqual(summary['updated'], 0)
            self.assertEqual(summary['already_done'], 1)
            self.assertEqual(self._roster(db, sep_15), [self.student_id])
        finally:
            db.close()

    def test_unknown_action_is_rejected(self):
        db = self._session_factory()
        try:
            with self.assertRaises(ValueError):
                sync_enrollment_to_instances(
                    db,
                    self.business_id,
                    self.course_id,
                    self.student_id,
                    date(2025, 9, 1),
                    'swap',
                    time_provider=self.tp,
                )
        finally:
            db.close()


if __name__ == '__main__':
    unittest.main()
