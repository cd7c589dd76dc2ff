# auth_utils.py
import jwt
from flask import request, jsonify, current_app, g
from functools import wraps


def jwt_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        # Authorization: Bearer <token>
        auth_header = request.headers.get('Authorization', None)
        if auth_header and auth_header.startswith('Bearer '):
            token = auth_header.split(' ')[1]
        else:
            return jsonify({'success': False, 'message': 'Missing authorization token'}), 401

        try:
            payload = jwt.decode(token, current_app.config['JWT_SECRET'], algorithms=['HS256'])
        except jwt.ExpiredSignatureError:
            return jsonify({'success': False, 'message': 'Authorization token expired'}), 401
        except jwt.InvalidTokenError:
            return jsonify({'success': False, 'message': 'Invalid authorization token'}), 401

        g.admin = payload.get('sub')
        return f(*args, **kwargs)
    return decorated_function
