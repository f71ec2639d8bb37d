import logging
import os
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel
from sqlalchemy import Column, DateTime, String, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import func

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("mock-registry")

# In-memory by default; set REGISTRY_DB_URL to persist between restarts.
DB_URL = os.getenv("REGISTRY_DB_URL", "sqlite://")
engine = create_engine(DB_URL, connect_args={"check_same_thread": False}, poolclass=StaticPool)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

app = FastAPI(title="Mock Patient Registry")


class PatientIn(BaseModel):
    id: str
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class Patient(Base):
    __tablename__ = "patients"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=True)
    phone = Column(String, index=True, nullable=True)
    email = Column(String, index=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _serialize(record: Patient) -> dict:
    return {
        "id": record.id,
        "name": record.name,
        "phone": record.phone,
        "email": record.email,
    }


@app.post("/patients")
async def register_patient(payload: PatientIn, db: Session = Depends(get_db)):
    record = db.get(Patient, payload.id)
    if record is None:
        record = Patient(id=payload.id)
    record.name = payload.name
    record.phone = payload.phone
    record.email = payload.email
    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info("Registered patient id=%s", record.id)
    return _serialize(record)


@app.get("/patients/{patient_id}")
async def get_patient(patient_id: str, db: Session = Depends(get_db)):
    record = db.get(Patient, patient_id)
    if record is None:
        raise HTTPException(status_code=404, detail="patient not found")
    return _serialize(record)


@app.get("/patients")
async def search_patients(phone: Optional[str] = None, email: Optional[str] = None, db: Session = Depends(get_db)):
    query = db.query(Patient)
    if phone:
        query = query.filter(Patient.phone == phone)
    if email:
        query = query.filter(Patient.email == email)
    records: List[Patient] = query.order_by(Patient.created_at).all()
    logger.info("Patient search phone=%s email=%s matches=%s", phone, email, len(records))
    return [_serialize(r) for r in records]


@app.post("/admin/clear-db")
async def clear_db(db: Session = Depends(get_db)):
    """
    Dangerous: clears all registered patients.
    """
    db.query(Patient).delete()
    db.commit()
    logger.warning("Cleared mock registry patients via admin endpoint")
    return {"status": "cleared"}
