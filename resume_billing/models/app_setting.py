from datetime import datetime, UTC
from sqlalchemy import Column, Integer, String, Text, DateTime

from resume_billing.core.base_model import Base


class AppSetting(Base):
    """Operator-editable key/value setting, read through ``BillingConfig``."""
    __tablename__ = "app_settings"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(100), unique=True, nullable=False, index=True)
    value = Column(Text, nullable=False)
    description = Column(String(255), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC))
