from __future__ import annotations

from sqlalchemy import Column, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class FormSchemaModel(Base):
    __tablename__ = "form_schemas"

    call_id = Column(String, primary_key=True)
    schema_json = Column(Text)
    version = Column(Integer, default=0)
    updated_at = Column(DateTime)


class ApplicationModel(Base):
    __tablename__ = "applications"

    id = Column(String, primary_key=True)
    call_id = Column(String, index=True)
    applicant_id = Column(String, index=True)
    status = Column(String, index=True)
    answers_json = Column(Text)
    score = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)
    submitted_at = Column(DateTime, nullable=True)
    decided_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)


class ApplicationHistoryModel(Base):
    __tablename__ = "application_history"

    id = Column(String, primary_key=True)
    application_id = Column(String, index=True)
    from_status = Column(String, nullable=True)
    to_status = Column(String)
    reason = Column(Text, nullable=True)
    changed_by = Column(String, nullable=True)
    changed_at = Column(DateTime)
