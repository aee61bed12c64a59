from __future__ import annotations

from typing import Any, Callable, Dict

from flask import Blueprint, Response, current_app, jsonify, request
from werkzeug.exceptions import RequestEntityTooLarge

from .errors import GatewayError, MalformedInput
from .gateway import FileGateway, Outcome

files_bp = Blueprint("files", __name__)

GATEWAY_KEY = "devfiles.gateway"

_TRUE_VALUES = {'1', 'true', 'yes', 'on'}


def _gateway() -> FileGateway:
    return current_app.extensions[GATEWAY_KEY]


def _flag(value: Any) -> bool:
    return str(value or '').strip().lower() in _TRUE_VALUES


def _respond(outcome: Outcome):
    if outcome.data is not None:
        response = jsonify(outcome.data)
    elif outcome.error is not None:
        response = jsonify({"error": outcome.error})
    else:
        response = jsonify(outcome.to_dict())
    if outcome.elevated:
        response.headers["X-Elevated"] = "1"
    return response, outcome.status


def _download(outcome: Outcome):
    if outcome.error is not None:
        return Response(outcome.error, status=outcome.status, mimetype="text/plain")
    name = str(outcome.extra.get("name") or "download").replace('"', '')
    response = Response(outcome.raw or b"", mimetype="application/octet-stream")
    response.headers["Content-Disposition"] = f'attachment; filename="{name}"'
    if outcome.elevated:
        response.headers["X-Elevated"] = "1"
    return response


def _get_read(args: Dict[str, Any]):
    outcome = _gateway().read(args.get("file") or "")
    if _flag(args.get("download")):
        return _download(outcome)
    return _respond(outcome)


GET_ACTIONS: Dict[str, Callable[[Dict[str, Any]], Any]] = {
    "list": lambda a: _respond(_gateway().list_directory(a.get("dir"))),
    "read": _get_read,
    "details": lambda a: _respond(_gateway().details(a.get("file") or "")),
    "search": lambda a: _respond(_gateway().search(a.get("query") or "", a.get("dir"))),
    "get_mysql_credentials": lambda a: _respond(_gateway().get_mysql_credentials()),
    "fix_permissions": lambda a: _respond(_gateway().fix_permissions(a.get("dir"))),
    "cleanup_tmp": lambda a: _respond(_gateway().cleanup_tmp()),
}

POST_ACTIONS: Dict[str, Callable[[Dict[str, Any]], Any]] = {
    "create": lambda p: _respond(_gateway().create(p.get("dir"), p.get("file") or "")),
    "create_dir": lambda p: _respond(_gateway().create_dir(p.get("dir"), p.get("name") or "")),
    "save": lambda p: _respond(
        _gateway().save(p.get("file") or "", p.get("content") or "", sudo=_flag(p.get("sudo")))
        if p.get("file") and p.get("content") is not None
        else Outcome.failure("Parametri mancanti: file e content", 400)
    ),
    "delete": lambda p: _respond(_gateway().delete(p.get("path") or "")),
    "rename": lambda p: _respond(_gateway().rename(p.get("old_path") or "", p.get("new_name") or "")),
    "upload": lambda p: _respond(_gateway().upload(p.get("dir"), request.files.get("file"))),
    "chmod": lambda p: _respond(_gateway().chmod(p.get("path") or "", p.get("mode") or "")),
    "copy": lambda p: _respond(_gateway().copy(p.get("source") or "", p.get("destination") or "")),
    "move": lambda p: _respond(_gateway().move(p.get("source") or "", p.get("destination") or "")),
}


@files_bp.errorhandler(GatewayError)
def _gateway_error(exc: GatewayError):
    return jsonify({"error": exc.message}), exc.status


@files_bp.errorhandler(RequestEntityTooLarge)
def _upload_too_large(_exc):
    return jsonify({"error": "Il file supera la dimensione massima consentita"}), 413


@files_bp.route("/api/files", methods=["GET", "POST"])
@files_bp.route("/file-manager.php", methods=["GET", "POST"])
def handle_action():
    if request.method == "GET":
        params: Dict[str, Any] = request.args.to_dict()
        action = params.get("action") or "list"
        handler = GET_ACTIONS.get(action)
    else:
        params = request.form.to_dict() or (request.get_json(silent=True) or {})
        if not isinstance(params, dict):
            raise MalformedInput("Richiesta non valida")
        action = params.get("action") or ""
        handler = POST_ACTIONS.get(action)

    if handler is None:
        current_app.logger.warning("devfiles: unknown %s action %r", request.method, action)
        return jsonify({"error": "Azione non valida"}), 400

    current_app.logger.debug("devfiles: %s %s", request.method, action)
    return handler(params)

