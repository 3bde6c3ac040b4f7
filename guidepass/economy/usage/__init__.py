from guidepass.economy.usage.service import UsageRecorder
from guidepass.economy.usage.types import UsageRecordResult, UsageRecordStatus, UsageResetResult

__all__ = ["UsageRecordResult", "UsageRecordStatus", "UsageRecorder", "UsageResetResult"]
