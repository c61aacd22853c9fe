import uvicorn
from constants import HOST, PORT, LOG_LEVEL, LOG_FILE, STORE_BACKEND
from logging_config import get_logger, setup_logging

logger = get_logger(__name__)


def main():
    setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
    from app import app

    logger.info(f"Starting Ephemeral Relay on {HOST}:{PORT} with {STORE_BACKEND} store")
    # Relay rooms and the memory store live in this process: one worker, no reload
    uvicorn.run(app, host=HOST, port=PORT, log_config=None)


if __name__ == "__main__":
    main()
