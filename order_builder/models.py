"""
SQLAlchemy Database Models

Remote copy of each signed-in user's order state, one row per
(owner identity, flow type).
"""

from sqlalchemy import JSON, Column, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from order_builder.database import Base


class OrderDraftRecord(Base):
    """
    Persisted order state for one user and one flow.

    The state column holds the whole order state; writes replace it.
    """
    __tablename__ = "order_drafts"
    __table_args__ = (
        UniqueConstraint("owner_identity", "flow_type", name="uq_order_drafts_owner_flow"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # =========================================================================
    # KEY
    # =========================================================================
    owner_identity = Column(String(128), nullable=False, index=True)
    flow_type = Column(String(64), nullable=False)

    # =========================================================================
    # PAYLOAD
    # =========================================================================
    schema_version = Column(String(20), nullable=False)
    state = Column(JSON, nullable=False)
    origin = Column(String(64), nullable=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<OrderDraftRecord {self.owner_identity}/{self.flow_type} v{self.schema_version}>"
