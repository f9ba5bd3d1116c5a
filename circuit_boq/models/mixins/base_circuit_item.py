from sqlalchemy import String, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime

class BaseCircuitItemMixin:
    """
    Base mixin for everything recorded against a distribution-board circuit.

    Invariants:
    - Immutable identity
    - Belongs to exactly one circuit, never reassigned
    """
    # =========
    # Identity & owner
    # =========
    id :Mapped[str] = mapped_column(String(36), primary_key=True,comment="Circuit item UUID")

    circuit_id :Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True,
        comment="Owning circuit ID, immutable after creation",
    )
    # =========
    # ⏱ Timestamps
    # =========
    created_at :Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        comment="Creation timestamp"
    )

    updated_at :Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
        comment="Last update timestamp"
    )
