import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    # Node websocket endpoint (Alchemy / Infura / self-hosted)
    NODE_WS_URL = os.getenv("NODE_WS_URL", os.getenv("ALCHEMY_WS_URL", ""))

    # 'pending' = unconfirmed tx hashes, 'logs' = mined Transfer events
    SUBSCRIPTION_MODE = os.getenv("SUBSCRIPTION_MODE", "pending")
    TRACK_BLOCKS = _env_bool("TRACK_BLOCKS", "True")

    # Admission gate in native units (ETH). Anything below is never stored.
    MIN_ADMISSION_VALUE = float(os.getenv("MIN_ADMISSION_VALUE", "10"))
    # Initial user threshold (ETH)
    DEFAULT_WHALE_THRESHOLD = float(os.getenv("DEFAULT_WHALE_THRESHOLD", "10"))

    # Node `value` is wei: integer scaled by 10**18
    VALUE_DECIMALS = int(os.getenv("VALUE_DECIMALS", "18"))

    # keccak256("Transfer(address,address,uint256)")
    TRANSFER_EVENT_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

    # Price
    PRICE_SYMBOL = os.getenv("PRICE_SYMBOL", "eth")
    PRICE_SOURCE = os.getenv("PRICE_SOURCE", "messari")  # 'messari' or 'exchange'
    MESSARI_URL = os.getenv("MESSARI_URL", "https://data.messari.io/api/v1/assets/{symbol}/metrics")
    PRICE_EXCHANGE = os.getenv("PRICE_EXCHANGE", "binance")
    PRICE_QUOTE_CURRENCY = os.getenv("PRICE_QUOTE_CURRENCY", "USDT")
    PRICE_REFRESH_INTERVAL = float(os.getenv("PRICE_REFRESH_INTERVAL", "10"))  # seconds
    PRICE_REQUEST_TIMEOUT = float(os.getenv("PRICE_REQUEST_TIMEOUT", "10"))

    # Connection
    RECONNECT_DELAY = float(os.getenv("RECONNECT_DELAY", "1"))
    MAX_RECONNECT_DELAY = float(os.getenv("MAX_RECONNECT_DELAY", "60"))
    RPC_TIMEOUT = float(os.getenv("RPC_TIMEOUT", "10"))
    MAX_INFLIGHT_LOOKUPS = int(os.getenv("MAX_INFLIGHT_LOOKUPS", "64"))  # concurrent eth_getTransactionByHash
    MAX_PENDING_LOOKUPS = int(os.getenv("MAX_PENDING_LOOKUPS", "4096"))  # queued lookups beyond this are dropped
    IDLE_TIMEOUT = float(os.getenv("IDLE_TIMEOUT", "30"))  # ping after this much silence

    # Retention (0 = unbounded)
    MAX_RECORDS = int(os.getenv("MAX_RECORDS", "0"))
    MAX_SEEN_IDS = int(os.getenv("MAX_SEEN_IDS", "0"))

    # Display
    WIDE_DISPLAY_MIN_WIDTH = int(os.getenv("WIDE_DISPLAY_MIN_WIDTH", "768"))
    EXPLORER_TX_URL = os.getenv("EXPLORER_TX_URL", "https://etherscan.io/tx/{tx_hash}")
    ASSET_LABEL = os.getenv("ASSET_LABEL", "ETH")

    # Operations
    REPORT_INTERVAL = float(os.getenv("REPORT_INTERVAL", "30"))  # seconds

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE = os.getenv("LOG_FILE", "logs/whale_watch.log")
