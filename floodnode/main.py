from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict

from fastapi import Body, Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

from . import store
from .aggregator import aggregate, flood_risk_score
from .config import settings
from .database import engine, get_db
from .logging_config import configure_logging
from .models import Base, SensorReading
from .processor import PayloadRejected, process_sensor_data

logger = logging.getLogger("floodnode.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info("app_starting")

    # Create tables on startup (avoids import-time crash if env isn't ready yet).
    Base.metadata.create_all(bind=engine)

    try:
        yield
    finally:
        logger.info("app_stopped")


app = FastAPI(title="FloodNode", lifespan=lifespan)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _reading_to_dict(r: SensorReading) -> Dict[str, Any]:
    return {
        "id": r.id,
        "node_id": r.node_id,
        "rain_analog": r.rain_analog,
        "rain_intensity": r.rain_intensity,
        "water_distance_cm": r.water_distance_cm,
        "flood_status": r.flood_status,
        "captured_at": r.captured_at,
        "created_at": r.created_at,
    }


@app.get("/")
def root():
    return {"message": "FloodNode Backend API - Ready to receive sensor data"}


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/ready")
def ready():
    db_ok = False
    db_error = None
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        db_ok = True
    except Exception as e:
        db_error = str(e)

    payload = {"ready": db_ok, "db": {"ok": db_ok, "error": db_error}}
    if not db_ok:
        raise HTTPException(status_code=503, detail=payload)
    return payload


@app.post("/api/sensor-data")
def receive_sensor_data(data: Dict[str, Any] = Body(...), db: Session = Depends(get_db)):
    try:
        result = process_sensor_data(db, data)
    except PayloadRejected as e:
        raise HTTPException(status_code=400, detail={"errors": e.errors})
    except Exception as e:
        logger.exception("store_failed error=%s raw=%s", e, data)
        raise HTTPException(status_code=500, detail={"error": "Failed to store sensor data"})

    return {
        "message": "Sensor data received and stored successfully",
        "id": result.record.id,
        "rain_intensity": result.reading.rain_intensity.value,
        "flood_status": result.reading.flood_status.value,
        "warnings": result.warnings,
    }


@app.get("/api/latest-readings")
def get_latest_readings(limit: int = settings.LATEST_READINGS_LIMIT, db: Session = Depends(get_db)):
    limit = max(1, min(int(limit), 1000))
    return [_reading_to_dict(r) for r in store.latest_readings(db, limit)]


@app.get("/api/node-history/{node_id}")
def get_node_history(node_id: str, limit: int = settings.NODE_HISTORY_LIMIT, db: Session = Depends(get_db)):
    limit = max(1, min(int(limit), 5000))
    return [_reading_to_dict(r) for r in store.node_history(db, node_id, limit)]


@app.get("/api/flood-risk")
def get_flood_risk(db: Session = Depends(get_db)):
    window = timedelta(hours=settings.RISK_WINDOW_HOURS)
    window_end = datetime.now(timezone.utc)
    try:
        rows = store.readings_since(db, window_end - window)
    except Exception as e:
        logger.exception("flood_risk_query_failed error=%s", e)
        raise HTTPException(status_code=500, detail={"error": "Failed to fetch flood risk data"})

    summaries = aggregate(rows, window_end=window_end, window=window)
    return [s.to_dict() for s in summaries]


@app.get("/api/nodes/latest")
def get_latest_per_node(db: Session = Depends(get_db)):
    return [_reading_to_dict(r) for r in store.latest_reading_per_node(db)]


@app.get("/api/nodes/{node_id}/risk-score")
def get_node_risk_score(node_id: str, db: Session = Depends(get_db)):
    history = store.node_history(db, node_id, 1)
    if not history:
        raise HTTPException(status_code=404, detail={"error": "no_data", "node_id": node_id})

    latest = history[0]
    node = store.get_node(db, node_id)
    drainage = node.drainage_score if node is not None else None
    return {
        "node_id": node_id,
        "reading_id": latest.id,
        "rain_intensity": latest.rain_intensity,
        "water_distance_cm": latest.water_distance_cm,
        "drainage_score": drainage,
        "risk_score": flood_risk_score(latest.rain_intensity, latest.water_distance_cm, drainage),
        "created_at": latest.created_at,
    }
