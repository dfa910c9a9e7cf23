"""SQLAlchemy ORM models for the attribution engine.

This module defines the four row-sets the engine works with: touches,
conversions, the touch/conversion link table and attribution results.
Integer primary keys on touches double as arrival order, which breaks
timestamp ties when touches are sorted.
"""

from datetime import datetime

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship


# Single Base used by the entire application
Base = declarative_base()


# =============================================================================
# TOUCHES
# =============================================================================
# WHAT: One observed marketing interaction for a visitor
# WHY: Attribution models need every in-window touch to split credit


class Touch(Base):
    """A marketing touch (pageview, click, form view) for one visitor.

    The channel label is computed once when the touch is recorded and never
    recomputed, so historical attribution stays stable if rules change.
    """
    __tablename__ = "touches"
    __table_args__ = (
        # Windowed lookup: visitor + time range
        Index("ix_touches_visitor_time", "visitor_id", "touched_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    visitor_id = Column(String(64), nullable=False)
    session_id = Column(String(64), nullable=True)

    touch_type = Column(String(50), nullable=False, default="pageview")
    channel = Column(String(100), nullable=True, index=True)

    # UTM parameters
    source = Column(String(100), nullable=True)
    medium = Column(String(100), nullable=True)
    campaign = Column(String(255), nullable=True)
    content = Column(String(255), nullable=True)
    term = Column(String(255), nullable=True)

    # Context
    landing_page = Column(Text, nullable=True)
    referrer = Column(Text, nullable=True)

    touched_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __str__(self):
        return f"{self.touch_type} via {self.channel or 'unknown'} at {self.touched_at}"


# =============================================================================
# CONVERSIONS
# =============================================================================


class Conversion(Base):
    """A terminal, valuable visitor action (lead form, purchase, enrollment)."""
    __tablename__ = "conversions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    visitor_id = Column(String(64), nullable=False, index=True)

    conversion_type = Column(String(50), nullable=False, index=True)
    conversion_value = Column(Numeric(12, 2), nullable=False, default=0)

    # Which external system reported it
    source = Column(String(50), nullable=True, index=True)
    source_id = Column(String(100), nullable=True)

    customer_email = Column(String(255), nullable=True)
    customer_name = Column(String(255), nullable=True)
    # "metadata" is reserved on declarative classes
    extra_data = Column("metadata", JSON, default=dict)

    converted_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Batch claim: set atomically by a worker before scoring
    attribution_claimed_at = Column(DateTime, nullable=True)

    results = relationship(
        "AttributionResult",
        back_populates="conversion",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    touch_links = relationship(
        "TouchConversionLink",
        back_populates="conversion",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __str__(self):
        return f"{self.conversion_type} - {self.visitor_id} - {self.converted_at}"


# =============================================================================
# LINKS & RESULTS
# =============================================================================


class TouchConversionLink(Base):
    """Touches that were in scope when a conversion was scored."""
    __tablename__ = "touch_conversions"

    conversion_id = Column(
        Integer, ForeignKey("conversions.id", ondelete="CASCADE"), primary_key=True
    )
    touch_id = Column(
        Integer, ForeignKey("touches.id", ondelete="CASCADE"), primary_key=True, index=True
    )
    linked_at = Column(DateTime, default=datetime.utcnow)

    conversion = relationship("Conversion", back_populates="touch_links")
    touch = relationship("Touch")


class AttributionResult(Base):
    """Credit assigned to one touch for one conversion under one model.

    Only non-zero credits are stored. For a fixed conversion and model the
    stored credits sum to 1.0.
    """
    __tablename__ = "attribution_results"
    __table_args__ = (
        UniqueConstraint("conversion_id", "touch_id", "model", name="uq_attribution_result"),
        Index("ix_attribution_results_conversion_model", "conversion_id", "model"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversion_id = Column(
        Integer, ForeignKey("conversions.id", ondelete="CASCADE"), nullable=False
    )
    touch_id = Column(
        Integer, ForeignKey("touches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    model = Column(String(50), nullable=False, index=True)
    credit = Column(Float, nullable=False, default=0.0)
    calculated_at = Column(DateTime, default=datetime.utcnow)

    conversion = relationship("Conversion", back_populates="results")
    touch = relationship("Touch")

    def __str__(self):
        return f"{self.model}: touch {self.touch_id} -> {self.credit:.4f}"
