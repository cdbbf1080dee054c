from datetime import time

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .schemas import BreakInterval, DayHours, WorkingHours


class TriageWeights(BaseModel):
    # Hand-tuned; recalibrate against real outcome data.
    pain_multiplier: int = 3
    swelling: int = 15
    bleeding: int = 20
    fever: int = 12
    cannot_eat: int = 8
    sleep_disruption: int = 7
    medication_ineffective: int = 5
    just_started: int = 5
    three_plus_days: int = 10
    keyword_bonuses: dict[str, int] = Field(
        default_factory=lambda: {
            "knocked out": 30,
            "abscess": 25,
            "infection": 20,
            "fracture": 25,
            "can't open mouth": 20,
            "severe pain": 20,
        }
    )
    urgent_threshold: int = 70
    moderate_threshold: int = 40


class NoShowWeights(BaseModel):
    # Hand-tuned; recalibrate against real outcome data.
    history_ratio_scale: int = 50
    recent_no_show: int = 10
    recent_window: int = 5
    off_peak_hour: int = 10
    early_hour: int = 9
    late_hour: int = 16
    edge_of_week: int = 5
    long_lead_time: int = 15
    long_lead_days: int = 30
    high_threshold: int = 50
    medium_threshold: int = 25


def default_working_hours() -> WorkingHours:
    lunch = BreakInterval(start=time(12, 0), end=time(13, 0), label="Lunch Break")
    weekday = DayHours(open_time=time(9, 0), close_time=time(17, 0), breaks=[lunch])
    return WorkingHours(
        weekly={
            0: weekday,
            1: weekday,
            2: weekday,
            3: weekday,
            4: weekday,
            5: DayHours(open_time=time(9, 0), close_time=time(13, 0)),
            6: DayHours(closed=True),
        }
    )


class Settings(BaseSettings):
    database_url: str = "sqlite+pysqlite:///./dental_scheduler.db"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-3-5-sonnet-20240620"
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = ""
    smtp_use_tls: bool = True
    staff_contacts: list[str] = []

    practitioner_ids: list[str] = ["dr-smith"]
    working_hours: WorkingHours = Field(default_factory=default_working_hours)
    slot_granularity_minutes: int = 15
    buffer_minutes: int = 15
    lookahead_days: int = 14
    min_advance_minutes: int = 30
    max_daily_appointments: int = 20

    conversation_idle_minutes: int = 30
    max_attempts: int = 3
    max_same_step_attempts: int = 5
    emergency_duration_minutes: int = 45
    emergency_lookahead_days: int = 2

    cleanup_interval_seconds: int = 3600
    resolved_triage_retention_minutes: int = 60

    triage: TriageWeights = Field(default_factory=TriageWeights)
    no_show: NoShowWeights = Field(default_factory=NoShowWeights)

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_nested_delimiter="__"
    )


settings = Settings()
