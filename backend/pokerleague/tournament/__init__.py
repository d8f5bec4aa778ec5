"""
Tournament Session Engine for a poker league season.

This module provides:
- Server-authoritative blind level timer with drift-free client derivation
- Elimination / rebuy / restore state machine with knockout bounties
- Prize pool and per-position payout calculator (regular and final table)
- Season ranking with worst-N round discards
- Single-writer round locks (Redis or in-process) and atomic completion
"""

from .blind_timer import AdminClock, LevelChangeMarker, LevelTransition, RoundTimer, TimerView
from .distributed_lock import LocalLockManager, LockType, RedisLockManager
from .elimination import EliminationOutcome, EliminationState, EliminationTracker
from .models import (
    BlindLevel,
    FinalTableCutPolicy,
    ResultEntry,
    Round,
    RoundResult,
    RoundStatus,
    RoundType,
    SeatedPlayer,
    TournamentSettings,
)
from .ranking import RankingEngine, RankingEntry, RankingSnapshot, SeasonPrizePool
from .scoring import ScoringTable
from .session import RoundObserver, TournamentSessionEngine, build_session_engine
from .settlement import PayoutSheet, PrizeCalculator
from .store import InMemoryRoundStore, RoundStore
from .table_draw import TableAssignment, draw_tables

__all__ = [
    "AdminClock",
    "LevelChangeMarker",
    "LevelTransition",
    "RoundTimer",
    "TimerView",
    "LocalLockManager",
    "LockType",
    "RedisLockManager",
    "EliminationOutcome",
    "EliminationState",
    "EliminationTracker",
    "BlindLevel",
    "FinalTableCutPolicy",
    "ResultEntry",
    "Round",
    "RoundResult",
    "RoundStatus",
    "RoundType",
    "SeatedPlayer",
    "TournamentSettings",
    "RankingEngine",
    "RankingEntry",
    "RankingSnapshot",
    "SeasonPrizePool",
    "ScoringTable",
    "RoundObserver",
    "TournamentSessionEngine",
    "build_session_engine",
    "PayoutSheet",
    "PrizeCalculator",
    "InMemoryRoundStore",
    "RoundStore",
    "TableAssignment",
    "draw_tables",
]
