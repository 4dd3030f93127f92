"""Core constants for Sentinel."""

import sys
from enum import Enum


class Regime(str, Enum):
    """Coarse market regime derived from the volatility model."""

    VOLATILITY_SHOCK = "VOLATILITY_SHOCK"
    LIQUIDITY_EXPANSION = "LIQUIDITY_EXPANSION"
    INSTITUTIONAL_COMPRESSION = "INSTITUTIONAL_COMPRESSION"
    STABLE_ACCUMULATION = "STABLE_ACCUMULATION"
    MEAN_REVERSION = "MEAN_REVERSION"


class CalibrationName(str, Enum):
    """Regime / vector-target calibration selection."""

    VARIANCE_BANDS = "variance_bands"
    VOLATILITY_ZSCORE = "volatility_zscore"


class FeedMode(str, Enum):
    """Tick source selection."""

    BINANCE = "binance"
    SIM = "sim"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


# Largest finite float; saturating arithmetic clamps to it
FLOAT_MAX = sys.float_info.max

# ============================================
# GARCH(1,1) Defaults
# ============================================

GARCH_OMEGA = 0.03
GARCH_ALPHA = 0.12
GARCH_BETA = 0.85
INITIAL_VARIANCE = 0.01
VOLATILITY_EPSILON = 0.001

# ============================================
# Risk Premium
# ============================================

RISK_PREMIUM_FLOOR = 0.02
RISK_PREMIUM_CAP = 0.06
RISK_PREMIUM_SLOPE = 0.04
RISK_PREMIUM_PRICE_SCALE = 0.001

# ============================================
# Oscillator / History
# ============================================

RSI_PERIOD = 14
HISTORY_CAPACITY = 45
HISTORY_NEUTRAL = 50.0

# ============================================
# Order Flow
# ============================================

FLOW_WINDOW = 100

# ============================================
# Vector Targets
# ============================================

BOX_MULTIPLIER = 0.5

# ============================================
# Feed Defaults
# ============================================

DEFAULT_SYMBOL = "PAXGUSDT"
BINANCE_WS_BASE_URL = "wss://stream.binance.com:9443/ws"
WS_PING_INTERVAL = 30
WS_PING_TIMEOUT = 10

# ============================================
# Application Constants
# ============================================

APP_NAME = "sentinel"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
