import json
from typing import Any

import azure.functions as func

from src.http.handlers import (
    handle_delete_assets,
    handle_delete_brief,
    handle_export,
    handle_generate,
    handle_list_briefs,
    handle_publish,
    handle_upload_assets,
)
from src.shared.logging_utils import error as log_error
from src.shared.wiring import get_services
from src.specs.models.http import ErrorResponse


bp = func.Blueprint()


def json_response(status: int, body: Any) -> func.HttpResponse:
    return func.HttpResponse(body=json.dumps(body), mimetype="application/json", status_code=status)


def read_json(req: func.HttpRequest, action: str):
    try:
        data = req.get_json()
    except ValueError:
        log_error(None, f"{action}:invalid_json")
        return None
    return data if isinstance(data, dict) else None


def invalid_json() -> func.HttpResponse:
    err = ErrorResponse(message="Invalid JSON body", errorCode="INVALID_REQUEST")
    return json_response(400, err.model_dump(mode="json"))


@bp.function_name(name="generate")
@bp.route(route="generate", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
async def generate(req: func.HttpRequest) -> func.HttpResponse:
    data = read_json(req, "generate")
    if data is None:
        return invalid_json()
    status, body = await handle_generate(get_services(), data)
    return json_response(status, body)


@bp.function_name(name="publish")
@bp.route(route="publish", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
async def publish(req: func.HttpRequest) -> func.HttpResponse:
    data = read_json(req, "publish")
    if data is None:
        return invalid_json()
    status, body = await handle_publish(get_services(), data)
    return json_response(status, body)


@bp.function_name(name="delete_brief")
@bp.route(route="briefs/{briefId}", methods=["DELETE"], auth_level=func.AuthLevel.FUNCTION)
def delete_brief(req: func.HttpRequest) -> func.HttpResponse:
    status, body = handle_delete_brief(get_services(), req.route_params.get("briefId", ""), req.params)
    return json_response(status, body)


@bp.function_name(name="export_snapshot")
@bp.route(route="export", methods=["GET"], auth_level=func.AuthLevel.FUNCTION)
def export_snapshot(req: func.HttpRequest) -> func.HttpResponse:
    status, body = handle_export(get_services(), req.params)
    return json_response(status, body)


@bp.function_name(name="list_briefs")
@bp.route(route="briefs", methods=["GET"], auth_level=func.AuthLevel.FUNCTION)
def list_briefs(req: func.HttpRequest) -> func.HttpResponse:
    status, body = handle_list_briefs(get_services(), req.params)
    return json_response(status, body)


@bp.function_name(name="upload_assets")
@bp.route(route="assets", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
def upload_assets(req: func.HttpRequest) -> func.HttpResponse:
    data = read_json(req, "upload_assets")
    if data is None:
        return invalid_json()
    status, body = handle_upload_assets(get_services(), data)
    return json_response(status, body)


@bp.function_name(name="delete_assets")
@bp.route(route="assets/delete", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
def delete_assets(req: func.HttpRequest) -> func.HttpResponse:
    data = read_json(req, "delete_assets")
    if data is None:
        return invalid_json()
    status, body = handle_delete_assets(get_services(), data)
    return json_response(status, body)
