from flask import Blueprint, jsonify
from models import Task

tasks_bp = Blueprint('tasks', __name__, url_prefix='/api/tasks')


@tasks_bp.route('', methods=['GET'])
def get_tasks():
    tasks = Task.query.order_by(Task.name.asc()).all()
    return jsonify([task.to_dict() for task in tasks])
