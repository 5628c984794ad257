"""
Price Consensus Oracle - Multi-Source Aggregation Module

This module reduces prices from several independent sources to one trusted value:
- AssetPair: Reference and counter asset in a common quote currency
- FeedAggregator: Concurrent fetching with per-source failure isolation
- ConsensusEngine: Weighted mean with confidence and deviation scores
- PlausibilityValidator: Sanity checks applied before acceptance
- UpdateDecisionPolicy: Hysteresis for ledger commits
- HistoryStore: Bounded in-memory history with hourly resampling
- AlertEngine: Threshold alerts with webhook delivery
- ScheduleController: Single-flight update cycles on a timer
- PriceOracle: Main orchestrator and read API
- fetchers: Modular price fetcher implementations
"""

from .AlertEngine import AlertEngine, AlertEvent, AlertRule, AssetThreshold
from .AssetPair import AssetPair
from .ConsensusEngine import ConsensusEngine, ConsensusResult, HistoryEntry
from .EmergencyOverride import EmergencyOverride
from .errors import (
    AlertRuleError,
    AllFeedsFailedError,
    CommitError,
    DeliveryError,
    NoPriceDataError,
    OracleError,
    PlausibilityError,
)
from .FeedAggregator import FeedAggregator, Reading
from .HistoryStore import HistoryStore, HourlyBucket
from .LedgerCommitter import CommitReceipt, LedgerCommitter
from .PlausibilityValidator import PlausibilityValidator
from .PriceOracle import Conversion, PriceOracle
from .ScheduleController import (
    PRICE_DECIMALS,
    CycleState,
    OperationalStats,
    OracleStatus,
    ScheduleController,
)
from .SourceHealth import SourceHealth, SourceStatus
from .UpdateDecisionPolicy import UpdateDecisionPolicy
from .Web3Ledger import Web3Ledger

__all__ = [
    "AlertEngine",
    "AlertEvent",
    "AlertRule",
    "AlertRuleError",
    "AllFeedsFailedError",
    "AssetPair",
    "AssetThreshold",
    "CommitError",
    "CommitReceipt",
    "ConsensusEngine",
    "ConsensusResult",
    "Conversion",
    "CycleState",
    "DeliveryError",
    "EmergencyOverride",
    "FeedAggregator",
    "HistoryEntry",
    "HistoryStore",
    "HourlyBucket",
    "LedgerCommitter",
    "NoPriceDataError",
    "OperationalStats",
    "OracleError",
    "OracleStatus",
    "PlausibilityError",
    "PlausibilityValidator",
    "PRICE_DECIMALS",
    "PriceOracle",
    "Reading",
    "ScheduleController",
    "SourceHealth",
    "SourceStatus",
    "UpdateDecisionPolicy",
    "Web3Ledger",
]
