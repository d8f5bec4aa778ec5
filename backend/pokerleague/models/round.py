"""라운드 / 라운드 결과 모델"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pokerleague.models.base import Base, TimestampMixin


class RoundRecord(Base, TimestampMixin):
    """시즌 라운드 (타이머 스냅샷 + 탈락 상태 포함)"""
    __tablename__ = "rounds"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    round_number: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        unique=True,
        comment="시즌 내 라운드 번호",
    )

    # regular / freezeout / knockout
    round_type: Mapped[str] = mapped_column(
        String(20),
        default="regular",
        nullable=False,
    )

    # scheduled / active / completed
    status: Mapped[str] = mapped_column(
        String(20),
        default="active",
        nullable=False,
        index=True,
    )

    buy_in_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    rebuy_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    knockout_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    is_final_table: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    rebuy_deadline_passed: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    seated_player_ids: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="착석 플레이어 ID 목록",
    )

    # 타이머 스냅샷 (유일한 시간 기준)
    is_started: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    current_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_paused: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    timer_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    time_remaining_seconds: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # 진행 중 탈락 스냅샷 (완료 시 삭제)
    elimination_state: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
        comment="진행 중 탈락/리바이 상태",
    )

    results: Mapped[list["RoundResultRecord"]] = relationship(
        "RoundResultRecord",
        back_populates="round",
        order_by="RoundResultRecord.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_rounds_status_number", "status", "round_number"),
    )

    def __repr__(self) -> str:
        return f"<RoundRecord number={self.round_number} status={self.status}>"


class RoundResultRecord(Base):
    """라운드 결과 (플레이어당 1행, 완료 후 불변)"""
    __tablename__ = "round_results"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    round_id: Mapped[int] = mapped_column(
        ForeignKey("rounds.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    player_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    position: Mapped[int] = mapped_column(Integer, nullable=False)
    points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rebuys: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    knockout_earnings: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0"),
        nullable=False,
    )
    prize: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0"),
        nullable=False,
    )

    round: Mapped[RoundRecord] = relationship("RoundRecord", back_populates="results")

    __table_args__ = (
        # 라운드당 플레이어 1행
        UniqueConstraint("round_id", "player_id", name="uq_round_result_player"),
        UniqueConstraint("round_id", "position", name="uq_round_result_position"),
    )

    def __repr__(self) -> str:
        return f"<RoundResultRecord round={self.round_id} player={self.player_id} pos={self.position}>"
