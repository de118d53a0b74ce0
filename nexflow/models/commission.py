from datetime import datetime
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Numeric, String

from nexflow.database import Base


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    client_id = Column(String, nullable=False, index=True)
    card_id = Column(String, ForeignKey("cards.id"), nullable=True, index=True)

    payment_amount = Column(Numeric(14, 2), nullable=False)
    payment_date = Column(DateTime, nullable=True)
    payment_status = Column(String, nullable=False, default="pending")  # pending|confirmed|failed|refunded

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class CardItem(Base):
    __tablename__ = "card_items"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    client_id = Column(String, nullable=False, index=True)
    card_id = Column(String, ForeignKey("cards.id"), nullable=False, index=True)

    item_id = Column(String, nullable=True, index=True)
    item_code = Column(String, nullable=True, index=True)
    quantity = Column(Numeric(14, 3), nullable=False, default=1)
    unit_price = Column(Numeric(14, 2), nullable=True)


class TeamCommission(Base):
    __tablename__ = "team_commissions"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    client_id = Column(String, nullable=False, index=True)
    team_id = Column(String, ForeignKey("teams.id"), nullable=False, index=True)

    # item_id rules take priority over item_code rules
    item_id = Column(String, nullable=True, index=True)
    item_code = Column(String, nullable=True, index=True)

    commission_type = Column(String, nullable=False)  # percentage|fixed
    commission_value = Column(Numeric(14, 3), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)


class CommissionCalculation(Base):
    __tablename__ = "commission_calculations"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    client_id = Column(String, nullable=False, index=True)

    card_id = Column(String, ForeignKey("cards.id"), nullable=False, index=True)
    card_item_id = Column(String, ForeignKey("card_items.id"), nullable=False, index=True)
    payment_id = Column(String, ForeignKey("payments.id"), nullable=False, index=True)
    payment_amount = Column(Numeric(14, 2), nullable=False)
    payment_date = Column(DateTime, nullable=True)

    team_id = Column(String, nullable=False, index=True)
    item_code = Column(String, nullable=True)
    team_commission_type = Column(String, nullable=False)
    team_commission_value = Column(Numeric(14, 3), nullable=False)
    team_commission_amount = Column(Numeric(14, 2), nullable=False)

    total_distributed_percentage = Column(Numeric(7, 3), nullable=False, default=0)
    total_distributed_amount = Column(Numeric(14, 2), nullable=False, default=0)

    status = Column(String, nullable=False, default="pending")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class CommissionDistribution(Base):
    __tablename__ = "commission_distributions"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    client_id = Column(String, nullable=False, index=True)
    calculation_id = Column(String, ForeignKey("commission_calculations.id"), nullable=False, index=True)

    user_id = Column(String, nullable=False, index=True)
    level_id = Column(String, nullable=False)
    distribution_percentage = Column(Numeric(7, 3), nullable=False)
    distribution_amount = Column(Numeric(14, 2), nullable=False)

    status = Column(String, nullable=False, default="pending")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
