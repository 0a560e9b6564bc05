import enum
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime
from sqlalchemy import Enum as SQLEnum
from sqlalchemy import Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from app.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ABTestStatus(str, enum.Enum):
    """Status of an A/B test lifecycle."""

    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


class ABTest(Base):
    """
    One experiment on a landing page.

    Owns its variants; allocations and conversions point back at it and are
    removed with it only on explicit deletion.
    """

    __tablename__ = "landing_page_ab_tests"

    id = Column(String, primary_key=True)
    landing_page_id = Column(String, nullable=False, index=True)

    name = Column(String, nullable=False)
    description = Column(Text)

    status = Column(SQLEnum(ABTestStatus), nullable=False, default=ABTestStatus.DRAFT)

    # Timeline
    start_date = Column(DateTime(timezone=True))
    end_date = Column(DateTime(timezone=True))

    # Statistical parameters
    confidence_level = Column(Float, nullable=False, default=95.0)  # Percent, e.g. 95
    min_sample_size = Column(Integer, nullable=False, default=100)  # Visitors per variant

    # Versioned goal definitions, validated by schemas.GoalDefinition
    goals = Column(JSON)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    metadata_ = Column("metadata", JSON)

    variants = relationship(
        "ABTestVariant",
        back_populates="test",
        cascade="all, delete-orphan",
        order_by="ABTestVariant.position",
    )


class ABTestVariant(Base):
    """
    One arm of a test with a fixed share of traffic.

    `template_id` is whatever the page renderer uses to pick a layout; the
    engine never looks inside it.
    """

    __tablename__ = "landing_page_ab_test_variants"

    id = Column(String, primary_key=True)
    test_id = Column(
        String, ForeignKey("landing_page_ab_tests.id", ondelete="CASCADE"), nullable=False
    )

    name = Column(String, nullable=False)
    template_id = Column(String)
    traffic_percentage = Column(Integer, nullable=False)  # 0..100, sums to 100 per test
    is_control = Column(Boolean, nullable=False, default=False)

    # Creation order within the test
    position = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    test = relationship("ABTest", back_populates="variants")


class ABTestAllocation(Base):
    """Sticky assignment of a visitor to a variant. Written once, never updated."""

    __tablename__ = "landing_page_ab_test_allocations"
    __table_args__ = (
        UniqueConstraint("test_id", "user_identifier", name="uq_ab_allocation_test_visitor"),
        Index("ix_ab_allocation_allocated_at", "allocated_at"),
    )

    id = Column(String, primary_key=True)
    test_id = Column(
        String, ForeignKey("landing_page_ab_tests.id", ondelete="CASCADE"), nullable=False
    )
    variant_id = Column(
        String,
        ForeignKey("landing_page_ab_test_variants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_identifier = Column(String, nullable=False)
    allocated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class ABTestConversion(Base):
    """A conversion event reported for an allocated visitor. Append-only."""

    __tablename__ = "landing_page_ab_test_conversions"
    __table_args__ = (
        Index("ix_ab_conversion_test_visitor", "test_id", "user_identifier"),
        Index("ix_ab_conversion_converted_at", "converted_at"),
    )

    id = Column(String, primary_key=True)
    test_id = Column(
        String, ForeignKey("landing_page_ab_tests.id", ondelete="CASCADE"), nullable=False
    )
    variant_id = Column(
        String,
        ForeignKey("landing_page_ab_test_variants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_identifier = Column(String, nullable=False)

    conversion_type = Column(String, nullable=False, default="conversion")
    conversion_value = Column(Float)

    converted_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
