"""
Tasks API Routes
REST API endpoints for personal task CRUD. Every route is scoped to the
authenticated account; changes are announced to the account's real-time
connections after they commit.
"""

import logging

from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user

from models import db
from services import task_service
from services.task_service import TaskServiceError

logger = logging.getLogger(__name__)

api_tasks_bp = Blueprint('api_tasks', __name__, url_prefix='/api/tasks')


def _service_error(e: TaskServiceError):
    return jsonify(e.to_dict()), e.status_code


def _server_error(action: str, e: Exception):
    db.session.rollback()
    logger.error(f"Failed to {action} for user {current_user.id}: {e}", exc_info=True)
    return jsonify({'success': False, 'message': f'Failed to {action}', 'code': 'SERVER_ERROR'}), 500


@api_tasks_bp.route('', methods=['GET'])
@login_required
def list_tasks():
    """All tasks of the current user, newest first."""
    try:
        tasks = task_service.list_tasks(current_user.id)
        return jsonify({
            'success': True,
            'tasks': [task.to_dict() for task in tasks],
            'count': len(tasks),
        })
    except Exception as e:
        return _server_error('list tasks', e)


@api_tasks_bp.route('/<task_id>', methods=['GET'])
@login_required
def get_task(task_id):
    """Get a single task."""
    try:
        task = task_service.get_task(task_id, current_user.id)
        return jsonify({'success': True, 'task': task.to_dict()})
    except TaskServiceError as e:
        return _service_error(e)
    except Exception as e:
        return _server_error('get task', e)


@api_tasks_bp.route('', methods=['POST'])
@login_required
def create_task():
    """Create a new task."""
    try:
        data = request.get_json(silent=True)
        task = task_service.create_task(current_user.id, data)
        return jsonify({
            'success': True,
            'message': 'Task created successfully',
            'task': task.to_dict(),
        }), 201
    except TaskServiceError as e:
        db.session.rollback()
        return _service_error(e)
    except Exception as e:
        return _server_error('create task', e)


@api_tasks_bp.route('/<task_id>', methods=['PUT', 'PATCH'])
@login_required
def update_task(task_id):
    """Update task fields (field-level, last write wins)."""
    try:
        data = request.get_json(silent=True)
        task = task_service.update_task(task_id, current_user.id, data)
        return jsonify({
            'success': True,
            'message': 'Task updated successfully',
            'task': task.to_dict(),
        })
    except TaskServiceError as e:
        db.session.rollback()
        return _service_error(e)
    except Exception as e:
        return _server_error('update task', e)


@api_tasks_bp.route('/<task_id>', methods=['DELETE'])
@login_required
def delete_task(task_id):
    """Delete a task."""
    try:
        deleted_id = task_service.delete_task(task_id, current_user.id)
        return jsonify({
            'success': True,
            'message': 'Task deleted successfully',
            'task_id': deleted_id,
        })
    except TaskServiceError as e:
        db.session.rollback()
        return _service_error(e)
    except Exception as e:
        return _server_error('delete task', e)
