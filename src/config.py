"""Configuration management for the Polymarket Momentum-Lag Bot."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent

# Data directory
DATA_DIR = PROJECT_ROOT / "data"
LOGS_DIR = PROJECT_ROOT / "logs"

# Ensure directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Optional API key for the authenticated user channel
POLYMARKET_AUTH_TOKEN = os.getenv("POLYMARKET_AUTH_TOKEN", "")

# =============================================================================
# API ENDPOINTS
# =============================================================================

CLOB_HOST = os.getenv("CLOB_HOST", "https://clob.polymarket.com")
GAMMA_API_URL = os.getenv("GAMMA_API_URL", "https://gamma-api.polymarket.com")
POLYMARKET_WS_URL = os.getenv(
    "POLYMARKET_WS_URL", "wss://ws-subscriptions-clob.polymarket.com/ws/market"
)
BINANCE_WS_URL = os.getenv("BINANCE_WS_URL", "wss://stream.binance.com:9443/ws")

# Lowercase Binance spot symbols streamed as aggTrade
BINANCE_SYMBOLS = [
    s.strip().lower()
    for s in os.getenv("BINANCE_SYMBOLS", "btcusdt,ethusdt,solusdt,xrpusdt").split(",")
    if s.strip()
]

# Assets with 15-minute up/down markets
SUPPORTED_ASSETS = ["BTC", "ETH", "SOL", "XRP"]

# =============================================================================
# CONNECTION
# =============================================================================

MAX_RECONNECT_ATTEMPTS = int(os.getenv("MAX_RECONNECT_ATTEMPTS", "10"))
HEARTBEAT_INTERVAL_SECONDS = float(os.getenv("HEARTBEAT_INTERVAL_SECONDS", "30"))

# =============================================================================
# STRATEGY
# =============================================================================

# Fraction of balance committed per position
POSITION_SIZE_PCT = float(os.getenv("POSITION_SIZE_PCT", "0.02"))

# Minimum mispricing versus fair value (0.50) before entering
GAP_THRESHOLD = float(os.getenv("GAP_THRESHOLD", "0.03"))

# Minimum crypto move (fraction) that counts as a hard move
MOVE_THRESHOLD = float(os.getenv("MOVE_THRESHOLD", "0.02"))

# Exit once the gap narrows below this
EXIT_GAP_THRESHOLD = float(os.getenv("EXIT_GAP_THRESHOLD", "0.01"))

MAX_HOLD_MINUTES = float(os.getenv("MAX_HOLD_MINUTES", "12"))
MAX_POSITIONS = int(os.getenv("MAX_POSITIONS", "3"))
MIN_LIQUIDITY = float(os.getenv("MIN_LIQUIDITY", "1000"))

# Pause new entries once drawdown from peak balance exceeds this
MAX_DRAWDOWN = float(os.getenv("MAX_DRAWDOWN", "0.10"))

# 0 disables the stop loss
STOP_LOSS_PCT = float(os.getenv("STOP_LOSS_PCT", "0"))

# Bollinger band squeeze detection
BB_PERIOD = int(os.getenv("BB_PERIOD", "20"))
BB_STD_DEV = float(os.getenv("BB_STD_DEV", "2"))
VOLATILITY_SQUEEZE_THRESHOLD = float(os.getenv("VOLATILITY_SQUEEZE_THRESHOLD", "0.02"))

# =============================================================================
# BACKTEST / REPORTING
# =============================================================================

INITIAL_BALANCE = float(os.getenv("INITIAL_BALANCE", "10000"))
TRADE_HISTORY_PATH = os.getenv("TRADE_HISTORY_PATH", str(DATA_DIR / "trades.csv"))
