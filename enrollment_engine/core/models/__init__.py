from enrollment_engine.core.models.academic_year import AcademicYear
from enrollment_engine.core.models.grade_level import GradeLevel
from enrollment_engine.core.models.section import Section
from enrollment_engine.core.models.student import Student
from enrollment_engine.core.models.enrollment_code import EnrollmentCodeRecord
from enrollment_engine.core.models.student_enrollment import StudentEnrollment
from enrollment_engine.core.models.marking_period import MarkingPeriod
from enrollment_engine.core.models.teacher_subject_assignment import TeacherSubjectAssignment
from enrollment_engine.core.models.rollover_run import RolloverLock, RolloverRun

__all__ = [
    "AcademicYear",
    "EnrollmentCodeRecord",
    "GradeLevel",
    "MarkingPeriod",
    "RolloverLock",
    "RolloverRun",
    "Section",
    "Student",
    "StudentEnrollment",
    "TeacherSubjectAssignment",
]
