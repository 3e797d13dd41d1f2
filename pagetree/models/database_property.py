"""Schéma typé des pages base de données"""

import enum
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, UniqueConstraint
from datetime import datetime
from pagetree.core.database import Base


class PropertyType(str, enum.Enum):
    TEXT = "text"
    NUMBER = "number"
    SELECT = "select"
    MULTI_SELECT = "multi_select"
    DATE = "date"
    PERSON = "person"
    CHECKBOX = "checkbox"
    URL = "url"
    EMAIL = "email"
    PHONE = "phone"
    FORMULA = "formula"
    RELATION = "relation"
    ROLLUP = "rollup"
    FILES = "files"


# calculées à la lecture, jamais stockées
DERIVED_TYPES = {PropertyType.FORMULA.value, PropertyType.ROLLUP.value}


class DatabaseProperty(Base):
    __tablename__ = "database_properties"

    id = Column(Integer, primary_key=True, index=True)
    page_id = Column(Integer, ForeignKey("pages.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False, default=PropertyType.TEXT.value)
    config = Column(JSON, nullable=False, default=dict)
    order = Column(Integer, nullable=False, default=0)


class RowValue(Base):
    __tablename__ = "row_values"
    __table_args__ = (UniqueConstraint("row_id", "property_id", name="uq_row_property"),)

    id = Column(Integer, primary_key=True, index=True)
    row_id = Column(Integer, ForeignKey("pages.id", ondelete="CASCADE"), nullable=False, index=True)
    property_id = Column(Integer, ForeignKey("database_properties.id", ondelete="CASCADE"), nullable=False, index=True)
    value = Column(JSON, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
