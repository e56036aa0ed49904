from enum import Enum


class EnrollmentCode(str, Enum):
    ADMISSION = "ADMISSION"
    PROMOTION = "PROMOTION"
    RETENTION = "RETENTION"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"
    DROP = "DROP"
    GRADUATE = "GRADUATE"
    RE_ADMISSION = "RE_ADMISSION"


class RolloverStatus(str, Enum):
    pending = "pending"
    promoted = "promoted"
    retained = "retained"
    graduated = "graduated"
    dropped = "dropped"
    transferred = "transferred"


class MarkingPeriodType(str, Enum):
    FY = "FY"
    SEM = "SEM"
    QTR = "QTR"
    PRO = "PRO"


class RolloverRunStatus(str, Enum):
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# Title and sort order used when seeding the enrollment_codes lookup table.
ENROLLMENT_CODE_TITLES = {
    EnrollmentCode.ADMISSION: "New Admission",
    EnrollmentCode.PROMOTION: "Promoted",
    EnrollmentCode.RETENTION: "Retained",
    EnrollmentCode.TRANSFER_IN: "Transferred In",
    EnrollmentCode.TRANSFER_OUT: "Transferred Out",
    EnrollmentCode.DROP: "Dropped",
    EnrollmentCode.GRADUATE: "Graduated",
    EnrollmentCode.RE_ADMISSION: "Re-Admission",
}
