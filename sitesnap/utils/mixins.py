from typing import Any, cast

import structlog


class LoggerMixin:
    """Mixin giving a class a structlog logger named after it.

    Subclasses may override ``log_context`` to bind identifying values
    (for example a snapshot id) onto every event they emit.
    """

    def log_context(self) -> dict[str, Any]:
        return {}

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        """Get logger instance for this class"""
        logger = structlog.get_logger(self.__class__.__name__)
        context = self.log_context()
        if context:
            logger = logger.bind(**context)
        return cast("structlog.stdlib.BoundLogger", logger)
