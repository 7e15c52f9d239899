from sqlalchemy import CheckConstraint, Column, DateTime, Float, Integer, String, Text
from sqlalchemy.sql import func

from .database import Base


class SensorReading(Base):
    __tablename__ = "sensor_readings"

    id = Column(Integer, primary_key=True, index=True)

    node_id = Column(String(50), nullable=False, index=True)
    rain_analog = Column(Integer, nullable=False)
    rain_intensity = Column(String(50), nullable=False)
    water_distance_cm = Column(Float, nullable=False)
    flood_status = Column(String(50), nullable=False, index=True)

    # Node-side capture time, when the node sent one.
    captured_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)


class Node(Base):
    __tablename__ = "nodes"
    __table_args__ = (
        CheckConstraint("drainage_score >= 1 AND drainage_score <= 5", name="ck_nodes_drainage_score"),
    )

    node_id = Column(String(50), primary_key=True)
    latitude = Column(Float)
    longitude = Column(Float)
    area_name = Column(Text)
    drainage_score = Column(Integer)
    installation_date = Column(DateTime(timezone=True), server_default=func.now())
    # ACTIVE, INACTIVE, MAINTENANCE
    status = Column(String(20), nullable=False, default="ACTIVE", server_default="ACTIVE")
