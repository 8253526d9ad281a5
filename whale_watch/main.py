import asyncio
from whale_watch.config import Config
from whale_watch.processors.data_processor import DataProcessor
from whale_watch.services.monitor import WhaleMonitor
from whale_watch.utils.logger import logger


def report(monitor: WhaleMonitor, top: int = 10):
    """
    Logs a status line and the top of the whale table.
    """
    snapshot = monitor.snapshot()
    formatter = monitor.ctx.formatter
    logger.info(
        f"[状态] {snapshot.connection_state.value} | block: {snapshot.block_height or '-'} | "
        f"price: {formatter.to_fiat(1, precise=True)} | "
        f"threshold: {formatter.threshold_label(snapshot.threshold)} | "
        f"whales: {len(snapshot.whales)}/{snapshot.total_records}"
    )
    if snapshot.is_waiting:
        logger.info("shhh, wait for the whales 🎣")
        return

    df = DataProcessor.whales_to_frame(snapshot.whales[:top], formatter)
    logger.info("\n" + df.drop(columns=['url']).to_string(index=False))


async def main():
    logger.info("正在启动 Whale Watch...")
    monitor = WhaleMonitor.from_config()
    await monitor.start()

    try:
        while True:
            await asyncio.sleep(Config.REPORT_INTERVAL)
            report(monitor)
    finally:
        await monitor.stop()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
