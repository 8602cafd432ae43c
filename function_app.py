import os
import logging
import azure.functions as func

from src.function_blueprints.http_calendar import bp as calendar_bp
from src.function_blueprints.http_content import bp as content_bp
from src.function_blueprints.timers import bp as timers_bp

app = func.FunctionApp()


def _configure_logging() -> None:
    lvl = (os.getenv("AZURE_SDK_LOG_LEVEL") or "").upper()
    if lvl:
        level = getattr(logging, lvl, logging.INFO)
        logging.getLogger("azure").setLevel(level)
        logging.getLogger("azure.cosmos").setLevel(level)
    logging.getLogger("crosspost").setLevel(logging.INFO)


_configure_logging()

app.register_functions(content_bp)
app.register_functions(calendar_bp)
app.register_functions(timers_bp)
