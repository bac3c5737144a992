"""
API Responses
=============

Uniform JSON envelope for every /api endpoint and the exceptions that map onto it.

    {"success": true,  "message": "...", "data": {...}}
    {"success": false, "message": "...", "errors": [...]}
"""

from flask import jsonify

from .helpers import build_pagination


class ApiError(Exception):
    """Raised anywhere below a route; rendered by the error handler in Bassac"""
    status_code = 400
    default_message = 'Bad request'

    def __init__(self, message=None, errors=None, status_code=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.errors = errors
        if status_code is not None:
            self.status_code = status_code

    def to_response(self):
        return error_response(self.message, self.status_code, self.errors)


class BadRequestError(ApiError):
    status_code = 400
    default_message = 'Bad request'


class UnauthorizedError(ApiError):
    status_code = 401
    default_message = 'Unauthorized'


class ForbiddenError(ApiError):
    status_code = 403
    default_message = 'Forbidden'


class NotFoundError(ApiError):
    status_code = 404
    default_message = 'Resource not found'


class ConflictError(ApiError):
    status_code = 409
    default_message = 'Resource already exists'


class ValidationError(ApiError):
    status_code = 422
    default_message = 'Validation failed'


def success_response(data=None, message='Success', status_code=200):
    return jsonify({'success': True, 'message': message, 'data': data}), status_code


def created_response(data=None, message='Created successfully'):
    return success_response(data, message, 201)


def paginated_response(items, page, limit, total, message='Success', key=None, **extra):
    """Paginated list. When key is given the items are nested under data[key]"""
    data = {key: items} if key else items
    return jsonify({
        'success': True,
        'message': message,
        'data': data,
        'pagination': build_pagination(page, limit, total),
        **extra,
    }), 200


def error_response(message='An error occurred', status_code=500, errors=None):
    body = {'success': False, 'message': message}
    if errors:
        body['errors'] = errors
    return jsonify(body), status_code


def bad_request_response(message='Bad request', errors=None):
    return error_response(message, 400, errors)


def unauthorized_response(message='Unauthorized'):
    return error_response(message, 401)


def forbidden_response(message='Forbidden'):
    return error_response(message, 403)


def not_found_response(message='Resource not found'):
    return error_response(message, 404)
