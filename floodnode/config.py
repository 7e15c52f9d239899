import os
from pathlib import Path

from dotenv import load_dotenv


_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


def _csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings:
    # Optional override (e.g. sqlite:///./floodnode.db for local runs)
    DATABASE_URL = os.getenv("DATABASE_URL")

    # PostgreSQL
    POSTGRES_USER = os.getenv("POSTGRES_USER", "flood")
    POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD", "floodpass")
    POSTGRES_DB = os.getenv("POSTGRES_DB", "flooddb")
    POSTGRES_HOST = os.getenv("POSTGRES_HOST", "localhost")
    POSTGRES_PORT = os.getenv("POSTGRES_PORT", "5432")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    CORS_ORIGINS = _csv(os.getenv("CORS_ORIGINS"))

    # Backend queries
    RISK_WINDOW_HOURS = float(os.getenv("RISK_WINDOW_HOURS", "24"))
    LATEST_READINGS_LIMIT = int(os.getenv("LATEST_READINGS_LIMIT", "20"))
    NODE_HISTORY_LIMIT = int(os.getenv("NODE_HISTORY_LIMIT", "50"))

    # Node agent
    NODE_ID = os.getenv("NODE_ID", "floodnode_01")
    INGEST_URL = os.getenv("INGEST_URL", "http://localhost:8000/api/sensor-data")
    NODE_SAMPLE_PERIOD_SECONDS = float(os.getenv("NODE_SAMPLE_PERIOD_SECONDS", "4"))
    NODE_HTTP_TIMEOUT_SECONDS = float(os.getenv("NODE_HTTP_TIMEOUT_SECONDS", "5"))
    NODE_SEND_QUEUE_SIZE = int(os.getenv("NODE_SEND_QUEUE_SIZE", "32"))
    # "serial" reads the microcontroller, "simulated" is for bench runs.
    NODE_SENSOR = os.getenv("NODE_SENSOR", "serial")

    # Serial link to the microcontroller. If SERIAL_PORT is unset the agent auto-detects.
    SERIAL_PORT = os.getenv("SERIAL_PORT")
    SERIAL_BAUDRATE = int(os.getenv("SERIAL_BAUDRATE", "115200"))
    SERIAL_READ_TIMEOUT_SECONDS = float(os.getenv("SERIAL_READ_TIMEOUT_SECONDS", "1"))
    SERIAL_CONNECT_RETRY_SECONDS = float(os.getenv("SERIAL_CONNECT_RETRY_SECONDS", "2"))

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


settings = Settings()
