from .activity import ActivityRecordPage, ActivityRecordRead, DeviceInfoRead
from .analytics import (
    LoginAnalysisRead,
    PeriodSummaryRead,
    TypeSummaryRead,
    UserSummaryRead,
)
from .retention import ManualCleanupRequest, RetentionAuditRead, ScheduledTaskRead

__all__ = [
    "ActivityRecordPage",
    "ActivityRecordRead",
    "DeviceInfoRead",
    "LoginAnalysisRead",
    "ManualCleanupRequest",
    "PeriodSummaryRead",
    "RetentionAuditRead",
    "ScheduledTaskRead",
    "TypeSummaryRead",
    "UserSummaryRead",
]
