"""
Default configuration for report runs, overridable from the environment
(prefix ``ATTENDANCE_``) or a ``.env`` file.
"""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import AttendanceConfig


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="ATTENDANCE_", env_file=".env", case_sensitive=False, extra="ignore")

    # Class window and thresholds are kept as text; parse_config validates them
    class_start: str = "13:30"
    class_end: str = "15:00"
    late_minutes: str = "10"
    absent_minutes: str = "30"
    total_points: str = "10"
    late_penalty: str = "0.5"
    absent_penalty: str = "1"

    default_format: str = "csv"

    log_level: str = "INFO"
    log_file: Optional[str] = None

    def to_config(self, **overrides) -> AttendanceConfig:
        values = dict(
            class_start=self.class_start,
            class_end=self.class_end,
            late_minutes=self.late_minutes,
            absent_minutes=self.absent_minutes,
            total_points=self.total_points,
            late_penalty=self.late_penalty,
            absent_penalty=self.absent_penalty,
        )
        values.update({k: str(v) for k, v in overrides.items() if v is not None})
        return AttendanceConfig(**values)


settings = Settings()
