#!/usr/bin/env python3
"""
Generate JSON Schemas, YAML variants, and OpenAPI from the pydantic models.

Outputs under src/specs/:
 - schemas/*.json (and *.yaml)
 - openapi.yaml and openapi.json
"""
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
SPECS = SRC / "specs"
SCHEMAS_DIR = SPECS / "schemas"

sys.path.insert(0, str(ROOT))

from src.specs.models import SCHEMA_MODELS  # noqa: E402


def write_json_yaml(obj: dict, json_path: Path) -> None:
    json_path.parent.mkdir(parents=True, exist_ok=True)
    with json_path.open("w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, ensure_ascii=False)
    yaml_path = json_path.with_suffix(".yaml")
    with yaml_path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(obj, f, sort_keys=False)


def generate_model_schemas() -> None:
    for filename, model in SCHEMA_MODELS.items():
        schema = model.model_json_schema()
        write_json_yaml(schema, SCHEMAS_DIR / filename)


def _component(filename: str) -> str:
    return SCHEMA_MODELS[filename].__name__


def _json_content(filename: str) -> dict:
    return {"application/json": {"schema": {"$ref": f"#/components/schemas/{_component(filename)}"}}}


def _query(name: str, required: bool = True, fmt: Optional[str] = None) -> dict:
    schema: Dict[str, Any] = {"type": "string"}
    if fmt:
        schema["format"] = fmt
    return {"in": "query", "name": name, "schema": schema, "required": required}


ERROR = "error.response.schema.json"

# (path, method, operationId, summary, params, request schema, success schema, error statuses)
ROUTES: List[tuple] = [
    ("/generate", "post", "generateVariants", "Create a brief and generate one variant per channel",
     [], "generate.request.schema.json", "generate.response.schema.json", ["400", "502"]),
    ("/publish", "post", "publishBrief", "Publish now or schedule the brief's variants",
     [], "publish.request.schema.json", "batch.result.schema.json", ["400", "402", "404"]),
    ("/calendar", "get", "calendarWindow", "Calendar entries for [start, end)",
     [_query("ownerId"), _query("start", False, "date"), _query("end", False, "date")], None, None, ["400"]),
    ("/credits", "get", "getCredits", "Current credit balance",
     [_query("ownerId")], None, "credit.balance.schema.json", ["400"]),
    ("/credits", "post", "addCredits", "Add credits to an owner",
     [], "credit.request.schema.json", "credit.balance.schema.json", ["400"]),
    ("/briefs/{briefId}", "delete", "deleteBrief", "Delete a brief with its variants and pending occurrences",
     [{"in": "path", "name": "briefId", "schema": {"type": "string"}, "required": True}, _query("ownerId")],
     None, None, ["400", "404"]),
    ("/export", "get", "exportSnapshot", "JSON backup of an owner's records",
     [_query("ownerId")], None, None, ["400"]),
    ("/briefs", "get", "listBriefs", "An owner's briefs, newest first",
     [_query("ownerId")], None, None, ["400"]),
    ("/assets", "post", "uploadAssets", "Upload base64 images and return asset references",
     [], "assets.upload.request.schema.json", "assets.upload.response.schema.json", ["400", "500", "502"]),
    ("/assets/delete", "post", "deleteAssets", "Delete an owner's uploaded assets",
     [], "assets.delete.request.schema.json", None, ["400", "404", "500", "502"]),
]


def build_openapi() -> dict:
    components = {
        "schemas": {model.__name__: model.model_json_schema() for model in SCHEMA_MODELS.values()}
    }
    paths: Dict[str, dict] = {}
    for path, method, op_id, summary, params, req_schema, resp_schema, errors in ROUTES:
        op: Dict[str, Any] = {"summary": summary, "operationId": op_id}
        if params:
            op["parameters"] = params
        if req_schema:
            op["requestBody"] = {"required": True, "content": _json_content(req_schema)}
        ok: Dict[str, Any] = {"description": "OK"}
        if resp_schema:
            ok["content"] = _json_content(resp_schema)
        else:
            ok["content"] = {"application/json": {"schema": {"type": "object"}}}
        op["responses"] = {"200": ok}
        for code in errors:
            op["responses"][code] = {"description": "Error", "content": _json_content(ERROR)}
        paths.setdefault(path, {})[method] = op

    return {
        "openapi": "3.0.3",
        "info": {
            "title": "Crosspost Orchestrator Functions API",
            "version": "0.1.0",
            "description": "HTTP endpoints exposed by the publishing orchestrator Functions app.",
        },
        "servers": [{"url": "http://localhost:7071/api", "description": "Local Functions host"}],
        "paths": paths,
        "components": components,
    }


def generate_openapi() -> None:
    write_json_yaml(build_openapi(), SPECS / "openapi.json")


def main() -> None:
    generate_model_schemas()
    generate_openapi()
    print("Specs generated under src/specs/")


if __name__ == "__main__":
    main()
