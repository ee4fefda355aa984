import logging

_FORMAT = "%(asctime)s %(levelname)s [%(run)s:%(video)s] %(message)s"


class RunContextFilter(logging.Filter):
    def __init__(self, run_name: str, video: str | None = None):
        super().__init__()
        self.run_name = run_name
        self.video = video

    def filter(self, record: logging.LogRecord) -> bool:
        record.run = self.run_name
        record.video = self.video or "-"
        return True


def _context_filter(handler: logging.Handler) -> RunContextFilter | None:
    for f in handler.filters:
        if isinstance(f, RunContextFilter):
            return f
    return None


def setup_logger(run_name: str, level: int | str = logging.INFO, video: str | None = None) -> logging.Logger:
    logger = logging.getLogger(f"tag_tracker.{run_name}")
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler.addFilter(RunContextFilter(run_name, video))
        logger.addHandler(handler)
    elif video is not None:
        # the logger is shared by name; later runs retarget the video tag
        for handler in logger.handlers:
            ctx = _context_filter(handler)
            if ctx is not None:
                ctx.video = video

    return logger


def add_file_handler(logger: logging.Logger, run_name: str, log_path: str,
                     video: str | None = None) -> logging.Handler:
    handler = logging.FileHandler(log_path)
    handler.setFormatter(logging.Formatter(_FORMAT))
    handler.addFilter(RunContextFilter(run_name, video))
    logger.addHandler(handler)
    return handler
