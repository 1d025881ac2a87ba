from datetime import date, datetime
from enum import Enum

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from studio_roster.db import Base


class CourseStatus(str, Enum):
    ACTIVE = 'active'
    CANCELLED = 'cancelled'
    COMPLETED = 'completed'


class EnrollmentStatus(str, Enum):
    ACTIVE = 'active'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class InstanceStatus(str, Enum):
    SCHEDULED = 'scheduled'
    CANCELLED = 'cancelled'
    COMPLETED = 'completed'
    RESCHEDULED = 'rescheduled'


class AttendanceStatus(str, Enum):
    PRESENT = 'present'
    ABSENT = 'absent'
    LATE = 'late'
    EXCUSED = 'excused'
    NONE = 'none'


class Business(Base):
    __tablename__ = 'businesses'
    __table_args__ = (
        UniqueConstraint('slug', name='uq_businesses_slug'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(180))
    slug: Mapped[str] = mapped_column(String(120), index=True)
    timezone: Mapped[str] = mapped_column(String(60), default='Asia/Jerusalem')
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class ClassTemplate(Base):
    __tablename__ = 'class_templates'
    __table_args__ = (
        Index('ix_class_templates_business_active', 'business_id', 'is_active'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    business_id: Mapped[int] = mapped_column(ForeignKey('businesses.id'), index=True)
    name: Mapped[str] = mapped_column(String(120))
    day_of_week: Mapped[int] = mapped_column(Integer, index=True)  # Sunday=0 ... Saturday=6
    start_time: Mapped[str] = mapped_column(String(5))
    duration_minutes: Mapped[int] = mapped_column(Integer, default=60)
    teacher_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    location: Mapped[str] = mapped_column(String(255), default='')
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    course_links: Mapped[list['CourseTemplate']] = relationship('CourseTemplate', back_populates='template')


class Course(Base):
    __tablename__ = 'courses'
    __table_args__ = (
        Index('ix_courses_business_status', 'business_id', 'status'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    business_id: Mapped[int] = mapped_column(ForeignKey('businesses.id'), index=True)
    name: Mapped[str] = mapped_column(String(180))
    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date] = mapped_column(Date)
    status: Mapped[str] = mapped_column(String(20), default=CourseStatus.ACTIVE.value)
    max_students: Mapped[int | None] = mapped_column(Integer, nullable=True)
    description: Mapped[str] = mapped_column(Text, default='')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    template_links: Mapped[list['CourseTemplate']] = relationship(
        'CourseTemplate',
        back_populates='course',
        cascade='all, delete-orphan',
        order_by='CourseTemplate.position',
    )
    enrollments: Mapped[list['Enrollment']] = relationship('Enrollment', back_populates='course')

    @property
    def template_ids(self) -> list[int]:
        return [int(link.template_id) for link in self.template_links]


class CourseTemplate(Base):
    __tablename__ = 'course_templates'
    __table_args__ = (
        UniqueConstraint('course_id', 'template_id', name='uq_course_templates_course_template'),
        Index('ix_course_templates_template_course', 'template_id', 'course_id'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    course_id: Mapped[int] = mapped_column(ForeignKey('courses.id'), index=True)
    template_id: Mapped[int] = mapped_column(ForeignKey('class_templates.id'), index=True)
    position: Mapped[int] = mapped_column(Integer, default=0)

    course: Mapped['Course'] = relationship('Course', back_populates='template_links')
    template: Mapped['ClassTemplate'] = relationship('ClassTemplate', back_populates='course_links')


class Student(Base):
    __tablename__ = 'students'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    business_id: Mapped[int] = mapped_column(ForeignKey('businesses.id'), index=True)
    first_name: Mapped[str] = mapped_column(String(120))
    last_name: Mapped[str] = mapped_column(String(120), default='')
    phone: Mapped[str] = mapped_column(String(30), default='')
    notes: Mapped[str] = mapped_column(Text, default='')
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    enrollments: Mapped[list['Enrollment']] = relationship('Enrollment', back_populates='student')

    @property
    def full_name(self) -> str:
        return f'{self.first_name} {self.last_name}'.strip()


class Enrollment(Base):
    __tablename__ = 'enrollments'
    __table_args__ = (
        Index('ix_enrollments_course_status', 'course_id', 'status'),
        Index('ix_enrollments_course_student', 'course_id', 'student_id'),
        # At most one open enrollment per student and course.
        Index(
            'uq_enrollments_open_course_student',
            'course_id',
            'student_id',
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    business_id: Mapped[int] = mapped_column(ForeignKey('businesses.id'), index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('students.id'), index=True)
    course_id: Mapped[int] = mapped_column(ForeignKey('courses.id'), index=True)
    effective_from: Mapped[date] = mapped_column(Date)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=EnrollmentStatus.ACTIVE.value)
    notes: Mapped[str] = mapped_column(Text, default='')
    cancellation_reason: Mapped[str] = mapped_column(Text, default='')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    student: Mapped['Student'] = relationship('Student', back_populates='enrollments')
    course: Mapped['Course'] = relationship('Course', back_populates='enrollments')


class ClassInstance(Base):
    __tablename__ = 'class_instances'
    __table_args__ = (
        UniqueConstraint('template_id', 'instance_date', name='uq_class_instances_template_date'),
        Index('ix_class_instances_business_date', 'business_id', 'instance_date'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    business_id: Mapped[int] = mapped_column(ForeignKey('businesses.id'), index=True)
    template_id: Mapped[int | None] = mapped_column(ForeignKey('class_templates.id'), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(120), default='')
    instance_date: Mapped[date] = mapped_column(Date, index=True)
    start_time: Mapped[str] = mapped_column(String(5))
    duration_minutes: Mapped[int] = mapped_column(Integer, default=60)
    teacher_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    location: Mapped[str] = mapped_column(String(255), default='')
    status: Mapped[str] = mapped_column(String(20), default=InstanceStatus.SCHEDULED.value, index=True)
    student_ids: Mapped[list[int]] = mapped_column(JSON, default=list)
    is_modified: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[str] = mapped_column(Text, default='')
    cancellation_reason: Mapped[str] = mapped_column(Text, default='')
    original_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    original_start_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    roster_synced_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    attendance_records: Mapped[list['AttendanceRecord']] = relationship('AttendanceRecord', back_populates='instance')


class AttendanceRecord(Base):
    __tablename__ = 'attendance_records'
    __table_args__ = (
        UniqueConstraint('instance_id', 'student_id', 'is_temp', name='uq_attendance_records_instance_student'),
        Index('ix_attendance_records_student_date', 'student_id', 'attendance_date'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    business_id: Mapped[int] = mapped_column(ForeignKey('businesses.id'), index=True)
    instance_id: Mapped[int] = mapped_column(ForeignKey('class_instances.id'), index=True)
    # Permanent student id, or a temporary student id when is_temp is set.
    student_id: Mapped[int] = mapped_column(Integer, index=True)
    is_temp: Mapped[bool] = mapped_column(Boolean, default=False)
    attendance_date: Mapped[date] = mapped_column(Date)
    status: Mapped[str] = mapped_column(String(20))
    notes: Mapped[str] = mapped_column(Text, default='')
    marked_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    marked_by_type: Mapped[str] = mapped_column(String(20), default='admin')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    instance: Mapped['ClassInstance'] = relationship('ClassInstance', back_populates='attendance_records')


class TempStudent(Base):
    __tablename__ = 'temp_students'
    __table_args__ = (
        Index('ix_temp_students_instance_active', 'instance_id', 'active'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    business_id: Mapped[int] = mapped_column(ForeignKey('businesses.id'), index=True)
    instance_id: Mapped[int] = mapped_column(ForeignKey('class_instances.id'), index=True)
    template_id: Mapped[int | None] = mapped_column(ForeignKey('class_templates.id'), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(180))
    phone: Mapped[str] = mapped_column(String(30), default='')
    notes: Mapped[str] = mapped_column(Text, default='')
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    converted_student_id: Mapped[int | None] = mapped_column(ForeignKey('students.id'), nullable=True)
    converted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class SyncFailureLog(Base):
    __tablename__ = 'sync_failure_logs'
    __table_args__ = (
        Index('ix_sync_failure_logs_business_created', 'business_id', 'created_at'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    business_id: Mapped[int] = mapped_column(Integer, index=True)
    operation: Mapped[str] = mapped_column(String(80), index=True)
    entity_type: Mapped[str] = mapped_column(String(40), default='')
    entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str] = mapped_column(Text, default='')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
