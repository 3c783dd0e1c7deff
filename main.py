# main.py
import sys
import asyncio
import logging

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(config=None):
    """Sets up rotating logging before anything else runs"""
    from core.config_manager import get_app_data_dir, get_config
    from logging.handlers import RotatingFileHandler

    logging_config = (config or get_config()).get_logging_config()

    logs_dir = get_app_data_dir() / "logs"
    logs_dir.mkdir(exist_ok=True)

    log_file = logs_dir / "http_relay.log"

    # Rotating handler: 5MB and 5 backups by default
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=logging_config.get('max_bytes', 5 * 1024 * 1024),
        backupCount=logging_config.get('backup_count', 5),
        encoding='utf-8'
    )
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logging.basicConfig(
        level=logging_config.get('level', 'INFO'),
        handlers=[console_handler, file_handler]
    )


def setup_exception_handler():
    """Installs the global exception handler"""

    def exception_handler(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return

        logger.critical("Unhandled exception:",
                        exc_info=(exc_type, exc_value, exc_traceback))

    sys.excepthook = exception_handler


async def serve(manager) -> int:
    """Runs the relay until cancelled"""
    if not await manager.start():
        logger.error(f"❌ Relay failed to start: {manager.last_error_details}")
        return 1

    try:
        await asyncio.Event().wait()
    finally:
        await manager.stop()
    return 0


def main():
    """Application entry point"""
    from core.config_manager import get_config
    from core.relay_manager import RelayManager

    config = get_config()
    setup_logging(config)
    setup_exception_handler()

    logger.info("🚀 Starting HTTP Relay")
    logger.info(f"📁 Config: {config.config_path}")

    manager = RelayManager(config)
    try:
        return asyncio.run(serve(manager))
    except KeyboardInterrupt:
        logger.info("👋 Interrupted, exiting")
        return 0


def run():
    sys.exit(main())


if __name__ == "__main__":
    run()
