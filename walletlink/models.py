from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from walletlink.db import Base


class WalletTelegramBinding(Base):
    __tablename__ = 'wallet_telegram_bindings'
    __table_args__ = (
        UniqueConstraint('wallet_address', name='uq_wallet_telegram_bindings_wallet'),
        UniqueConstraint('telegram_user_id', name='uq_wallet_telegram_bindings_telegram'),
        UniqueConstraint('wallet_address', 'telegram_user_id', name='uq_wallet_telegram_bindings_pair'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    wallet_address: Mapped[str] = mapped_column(String(42), nullable=False)
    telegram_user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class LinkChallenge(Base):
    __tablename__ = 'link_challenges'
    __table_args__ = (
        UniqueConstraint('nonce', name='uq_link_challenges_nonce'),
        Index('ix_link_challenges_wallet_telegram', 'wallet_address', 'telegram_user_id'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    nonce: Mapped[str] = mapped_column(String(64), nullable=False)
    wallet_address: Mapped[str] = mapped_column(String(42), nullable=False)
    telegram_user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    issued_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    consumed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
