import azure.functions as func

from src.http.handlers import run_dispatch_due, run_reconcile
from src.shared.logging_utils import info as log_info, warning as log_warning
from src.shared.wiring import get_services


bp = func.Blueprint()


@bp.function_name(name="dispatch_due")
@bp.timer_trigger(schedule="0 * * * * *", arg_name="timer", run_on_startup=False)
def dispatch_due(timer: func.TimerRequest) -> None:
    if timer.past_due:
        log_warning(None, "timer:dispatch_due_past_due")
    summary = run_dispatch_due(get_services())
    log_info(None, "timer:dispatch_due", **summary)


@bp.function_name(name="reconcile")
@bp.timer_trigger(schedule="0 */5 * * * *", arg_name="timer", run_on_startup=False)
def reconcile(timer: func.TimerRequest) -> None:
    summary = run_reconcile(get_services())
    log_info(None, "timer:reconcile", **summary)
