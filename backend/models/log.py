from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, func
from sqlalchemy.orm import relationship
from database import Base


# Audit trail of business events (logins, cart changes, orders, payments)
class Log(Base):
    __tablename__ = "logs"

    id = Column(Integer, primary_key=True, index=True)
    ts = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    action = Column(String(50), index=True)
    resource = Column(String(50), index=True)
    status = Column(String(20), index=True)  # SUCCESS, FAIL or SKIPPED
    ip = Column(String(64), nullable=True)

    # Free-form event context (ids, totals, reasons)
    meta = Column(JSON, nullable=True)

    user = relationship("User", uselist=False)
