import sys
from loguru import logger
from whale_watch.config import Config

def setup_logger():
    """
    Configures the Loguru logger.
    """
    logger.remove() # Remove default handler
    
    # Add console handler with color
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=Config.LOG_LEVEL,
        colorize=True
    )
    
    # Rotating file sink, disabled with LOG_FILE=""
    if Config.LOG_FILE:
        logger.add(
            Config.LOG_FILE,
            rotation="1 day",
            retention="7 days",
            level=Config.LOG_LEVEL,
            compression="zip"
        )

# Initialize logger on module import
setup_logger()
