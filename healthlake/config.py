from typing import List

from pydantic_settings import BaseSettings

DEFAULT_ALLOWLIST = [
    "active_energy",
    "apple_exercise_time",
    "apple_sleeping_wrist_temperature",
    "basal_energy_burned",
    "blood_oxygen_saturation",
    "blood_pressure",
    "body_fat_percentage",
    "heart_rate",
    "heart_rate_variability",
    "respiratory_rate",
    "resting_heart_rate",
    "sleep_analysis",
    "step_count",
    "vo2_max",
    "walking_running_distance",
    "weight_body_mass",
]


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql://localhost:5432/healthlake"
    API_KEY: str = ""
    DEFAULT_USER_ID: int = 1
    LZFSE_BINARY: str = "lzfse"
    SLEEP_NIGHT_GAP_HOURS: float = 12.0
    ALLOWLIST: List[str] = DEFAULT_ALLOWLIST
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"


settings = Settings()
