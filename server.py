import uvicorn  # type: ignore

from app.core import config
from app.utils import get_logger

log = get_logger(__name__)

if __name__ == "__main__":
    log.info("Running server (log level %s)", config.LOG_LEVEL)
    uvicorn.run("app.main:app", reload=True, host="127.0.0.1", port=8000, log_level=config.LOG_LEVEL.lower())
