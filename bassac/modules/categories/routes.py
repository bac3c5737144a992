from flask import request

from bassac.core.helpers import parse_bool
from bassac.core.logging_service import db_log
from bassac.core.responses import NotFoundError, created_response, success_response
from bassac.modules.auth.decorators import is_admin, is_editor
from . import categories_bp
from .database import (
    create_category_db, delete_category_db, find_active_categories, get_category_by_id_db,
    get_category_by_slug_db, get_category_stats_db, get_category_tree, list_categories_db,
    reorder_categories_db, update_category_db,
)


@categories_bp.route('', methods=['GET'])
def list_categories():
    if parse_bool(request.args.get('tree')):
        return success_response(get_category_tree(), 'Categories retrieved successfully')
    if parse_bool(request.args.get('includeInactive')):
        return success_response(list_categories_db(include_inactive=True), 'Categories retrieved successfully')
    return success_response(find_active_categories(), 'Categories retrieved successfully')


@categories_bp.route('/slug/<slug>', methods=['GET'])
def get_by_slug(slug):
    category = get_category_by_slug_db(slug)
    if not category:
        raise NotFoundError('Category not found')
    return success_response(category, 'Category retrieved successfully')


@categories_bp.route('/stats', methods=['GET'])
@is_editor
def category_stats():
    return success_response(get_category_stats_db(), 'Category statistics retrieved')


@categories_bp.route('/id/<int:category_id>', methods=['GET'])
@is_editor
def get_by_id(category_id):
    category = get_category_by_id_db(category_id)
    if not category:
        raise NotFoundError('Category not found')
    return success_response(category, 'Category retrieved successfully')


@categories_bp.route('', methods=['POST'])
@is_admin
def create_category():
    category = create_category_db(request.get_json(silent=True) or {})
    db_log('info', 'categories', f"Category created: {category['name']}", {'id': category['id']})
    return created_response(category, 'Category created successfully')


@categories_bp.route('/reorder', methods=['PUT'])
@is_admin
def reorder_categories():
    data = request.get_json(silent=True)
    items = data.get('categories') if isinstance(data, dict) else data
    updated = reorder_categories_db(items)
    return success_response({'updated': updated}, 'Categories reordered successfully')


@categories_bp.route('/<int:category_id>', methods=['PUT'])
@is_admin
def update_category(category_id):
    category = update_category_db(category_id, request.get_json(silent=True) or {})
    return success_response(category, 'Category updated successfully')


@categories_bp.route('/<int:category_id>', methods=['DELETE'])
@is_admin
def delete_category(category_id):
    delete_category_db(category_id)
    db_log('info', 'categories', 'Category deleted', {'id': category_id})
    return success_response(None, 'Category deleted successfully')
