"""Ошибки приложения и их JSON-представление."""
from __future__ import annotations
import logging

from flask import jsonify
from flask_wtf.csrf import CSRFError
from pydantic import ValidationError as SchemaError

log = logging.getLogger(__name__)


class AppError(Exception):
    """Базовая ошибка приложения: сообщение, HTTP-статус и детали."""
    status_code = 500

    def __init__(self, message: str, status_code: int | None = None, details: dict | None = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"ok": False, "error": self.message, "details": self.details}


class ValidationError(AppError):
    """Некорректные входные данные, например слот с end <= start."""
    status_code = 400


class ForbiddenError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    """Пересечение расписания или нарушение уникальности."""
    status_code = 409


def _app_error(exc: AppError):
    if exc.status_code >= 500:
        log.error("app error: %s", exc.message, extra={"event": "app_error"})
    return jsonify(exc.to_dict()), exc.status_code


def _schema_error(exc: SchemaError):
    errors = [
        {"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"], "type": e["type"]}
        for e in exc.errors()
    ]
    return jsonify({"ok": False, "error": "validation_error", "details": {"errors": errors}}), 400


def _csrf_error(exc: CSRFError):
    return jsonify({"ok": False, "error": "csrf_failed", "details": {"reason": exc.description}}), 400


def register_error_handlers(app) -> None:
    app.register_error_handler(AppError, _app_error)
    app.register_error_handler(SchemaError, _schema_error)
    app.register_error_handler(CSRFError, _csrf_error)
