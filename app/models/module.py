from sqlalchemy import Column, String, Boolean, DateTime, Integer, Numeric, Text, JSON
from sqlalchemy.dialects.postgresql import UUID
from decimal import Decimal
from datetime import datetime
import uuid
from app.db.session import Base


class Module(Base):
    """Reference table of licensable feature modules."""
    __tablename__ = "modules"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String(50), nullable=False, unique=True, index=True)  # e.g. "SCHEDULING", "IMAGING"
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    is_core = Column(Boolean, default=False, nullable=False)  # bundled into every subscription
    monthly_price = Column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    yearly_price = Column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    dependencies = Column(JSON, default=list, nullable=False)  # required module codes
    display_order = Column(Integer, default=0, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Module {self.code}>"
