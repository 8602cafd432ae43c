import azure.functions as func

from src.function_blueprints.http_content import invalid_json, json_response, read_json
from src.http.handlers import handle_add_credits, handle_calendar, handle_get_credits
from src.shared.wiring import get_services


bp = func.Blueprint()


@bp.function_name(name="calendar")
@bp.route(route="calendar", methods=["GET"], auth_level=func.AuthLevel.FUNCTION)
def calendar(req: func.HttpRequest) -> func.HttpResponse:
    status, body = handle_calendar(get_services(), req.params)
    return json_response(status, body)


@bp.function_name(name="credits")
@bp.route(route="credits", methods=["GET", "POST"], auth_level=func.AuthLevel.FUNCTION)
def credits(req: func.HttpRequest) -> func.HttpResponse:
    if req.method.upper() == "GET":
        status, body = handle_get_credits(get_services(), req.params)
        return json_response(status, body)
    data = read_json(req, "credits")
    if data is None:
        return invalid_json()
    status, body = handle_add_credits(get_services(), data)
    return json_response(status, body)
