from sqlalchemy import Column, DateTime, Numeric, Text
from sqlalchemy.sql import func

from deskbot.database import Base


class Client(Base):
    __tablename__ = "clients"

    cuit = Column(Text, primary_key=True)  # 11 digits, no separators
    name = Column(Text)
    fee_debt = Column(Numeric(14, 2))  # honorarios adeudados
    monotributo_amount = Column(Numeric(14, 2))
    debt = Column(Numeric(14, 2))
    updated_at = Column(DateTime(timezone=True), server_default=func.now())
