import tempfile
import unittest
from datetime import date, datetime
from pathlib import Path
from unittest.mock import patch
from zoneinfo import ZoneInfo

from freezegun import freeze_time
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from studio_roster import metrics
from studio_roster import scheduler as scheduler_module
from studio_roster.core.time_provider import TimeProvider
from studio_roster.db import Base
from studio_roster.jobs import generate_instances, runtime
from studio_roster.jobs.generate_instances import generate_upcoming_instances
from studio_roster.models import Business, ClassInstance, ClassTemplate
from studio_roster.config import settings
from studio_roster.request_context import current_business, current_endpoint
from studio_roster.services.bootstrap_service import prime_schedules, run_bootstrap
from studio_roster.services.business_service import create_business
from studio_roster.services.template_service import create_template, deactivate_template


class FixedTimeProvider(TimeProvider):
    def __init__(self, frozen_dt: datetime):
        self._frozen_dt = frozen_dt

    def now(self) -> datetime:
        return self._frozen_dt

    def local_now(self, tz: str) -> datetime:
        return self._frozen_dt.astimezone(ZoneInfo(tz))


class GenerateInstancesJobTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_generate_instances_job.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)
        # Sunday 31 Aug 2025, 11:00 in the studio's timezone.
        cls.tp = FixedTimeProvider(datetime(2025, 8, 31, 11, 0, tzinfo=ZoneInfo('Asia/Jerusalem')))

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        db = self._session_factory()
        try:
            for table in (ClassInstance, ClassTemplate, Business):
                db.query(table).delete()
            db.commit()
            self.business_id = create_business(db, name='Studio Eight', slug='studio-eight').id
            self.monday_id = create_template(
                db, self.business_id, name='Ballet Mon', day_of_week=1, start_time='17:00', time_provider=self.tp
            ).id
            self.wednesday_id = create_template(
                db, self.business_id, name='Tap Wed', day_of_week=3, start_time='18:30', time_provider=self.tp
            ).id
        finally:
            db.close()

    def _instance_days(self, db, business_id=None):
        rows = (
            db.query(ClassInstance)
            .filter(ClassInstance.business_id == (business_id or self.business_id))
            .order_by(ClassInstance.instance_date.asc())
            .all()
        )
        return [(row.template_id, row.instance_date) for row in rows]

    def test_generates_window_and_is_idempotent(self):
        db = self._session_factory()
        try:
            first = generate_upcoming_instances(db, self.business_id, days=14, time_provider=self.tp)
            self.assertEqual(first, {'created': 4, 'existing': 0, 'failed': 0})
            self.assertEqual(
                self._instance_days(db),
                [
                    (self.monday_id, date(2025, 9, 1)),
                    (self.wednesday_id, date(2025, 9, 3)),
                    (self.monday_id, date(2025, 9, 8)),
                    (self.wednesday_id, date(2025, 9, 10)),
                ],
            )
            second = generate_upcoming_instances(db, self.business_id, days=14, time_provider=self.tp)
            self.assertEqual(second, {'created': 0, 'existing': 4, 'failed': 0})
            self.assertEqual(db.query(ClassInstance).count(), 4)
        finally:
            db.close()

    def test_inactive_template_is_skipped(self):
        db = self._session_factory()
        try:
            deactivate_template(db, self.business_id, self.wednesday_id, time_provider=self.tp)
            summary = generate_upcoming_instances(db, self.business_id, days=7, time_provider=self.tp)
            self.assertEqual(summary['created'], 1)
            self.assertEqual(self._instance_days(db), [(self.monday_id, date(2025, 9, 1))])
        finally:
            db.close()

    def test_window_must_be_positive(self):
        db = self._session_factory()
        try:
            with self.assertRaises(ValueError):
                generate_upcoming_instances(db, self.business_id, days=0, time_provider=self.tp)
        finally:
            db.close()

    @freeze_time('2025-08-31 08:00:00')
    def test_execute_runs_every_active_business(self):
        db = self._session_factory()
        try:
            other_id = create_business(db, name='Studio Nine', slug='studio-nine').id
            create_template(db, other_id, name='Yoga Sun', day_of_week=0, start_time='09:00', time_provider=self.tp)
            dormant = create_business(db, name='Dormant', slug='dormant')
            create_template(db, dormant.id, name='Never', day_of_week=2, start_time='10:00', time_provider=self.tp)
            dormant.is_active = False
            db.commit()
            dormant_id = dormant.id
        finally:
            db.close()

        with patch.object(runtime, 'SessionLocal', self._session_factory):
            generate_instances.execute()

        db = self._session_factory()
        try:
            self.assertEqual(self._instance_days(db)[:2], [(self.monday_id, date(2025, 9, 1)), (self.wednesday_id, date(2025, 9, 3))])
            self.assertEqual(self._instance_days(db, other_id)[0][1], date(2025, 8, 31))
            self.assertEqual(self._instance_days(db, dormant_id), [])
        finally:
            db.close()


class JobRuntimeTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_job_runtime.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        db = self._session_factory()
        try:
            db.query(Business).delete()
            db.commit()
            self.first_id = create_business(db, name='First', slug='first').id
            self.second_id = create_business(db, name='Second', slug='second').id
        finally:
            db.close()

    def test_one_failing_business_does_not_stop_the_others(self):
        seen = []

        def task(db, business_id):
            seen.append(business_id)
            if business_id == self.first_id:
                raise RuntimeError('boom')

        metrics.flush_roster_metrics()
        with patch.object(runtime, 'SessionLocal', self._session_factory):
            outcomes = runtime.run_job('unit_job', task)

        self.assertEqual(seen, [self.first_id, self.second_id])
        self.assertEqual(outcomes, {self.first_id: False, self.second_id: True})
        self.assertEqual(metrics.job_outcomes(), {'unit_job': {'succeeded': 1, 'failed': 1}})
        self.assertTrue(runtime.acquire_job_lock('unit_job', self.first_id))
        runtime.release_job_lock('unit_job', self.first_id)

    def test_task_runs_tagged_with_job_and_business(self):
        tags = []

        def task(db, business_id):
            tags.append((current_endpoint.get(), current_business.get()))

        with patch.object(runtime, 'SessionLocal', self._session_factory):
            runtime.with_business_sessions(task, job_label='tag_job')

        self.assertEqual(tags, [('job tag_job', str(self.first_id)), ('job tag_job', str(self.second_id))])
        self.assertEqual(current_business.get(), '-')

    def test_business_already_running_is_skipped(self):
        seen = []
        self.assertTrue(runtime.acquire_job_lock('locked_job', self.second_id))
        try:
            with patch.object(runtime, 'SessionLocal', self._session_factory):
                runtime.with_business_sessions(lambda db, business_id: seen.append(business_id), job_label='locked_job')
        finally:
            runtime.release_job_lock('locked_job', self.second_id)
        self.assertEqual(seen, [self.first_id])


class BootstrapTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_bootstrap.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)
        cls.tp = FixedTimeProvider(datetime(2025, 8, 31, 11, 0, tzinfo=ZoneInfo('Asia/Jerusalem')))

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def test_seeds_first_studio_once_and_primes_its_schedule(self):
        db = self._session_factory()
        try:
            with patch.object(settings, 'bootstrap_business_slug', ''):
                self.assertEqual(run_bootstrap(db), {'ran': False, 'reason': 'no_business_slug'})

            seeded = run_bootstrap(db, slug=' Studio-Ten ')
            self.assertTrue(seeded['ran'])
            self.assertEqual(seeded['slug'], 'studio-ten')
            self.assertEqual(run_bootstrap(db, slug='another'), {'ran': False, 'reason': 'businesses_exist'})

            create_template(db, seeded['business_id'], name='Ballet Mon', day_of_week=1, start_time='17:00', time_provider=self.tp)
            primed = prime_schedules(db, days=14, time_provider=self.tp)
            self.assertEqual(primed, {'studio-ten': {'created': 2, 'existing': 0, 'failed': 0}})
        finally:
            db.close()


class SchedulerRegistrationTests(unittest.TestCase):
    def tearDown(self):
        scheduler_module.scheduler.remove_all_jobs()

    def test_start_scheduler_registers_weekly_generation(self):
        with patch.object(scheduler_module.scheduler, 'start') as start:
            scheduler_module.start_scheduler()
        start.assert_called_once()
        jobs = scheduler_module.scheduler.get_jobs()
        self.assertEqual([job.id for job in jobs], [generate_instances.JOB_LABEL])
        self.assertIs(jobs[0].func, scheduler_module.generate_instances_job)


if __name__ == '__main__':
    unittest.main()
