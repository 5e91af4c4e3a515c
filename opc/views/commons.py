import logging
from functools import wraps

from flask import g, abort, current_app, request
from flask_httpauth import HTTPBasicAuth

from opc.managers.key_vaults import KeyVaultReferenceError
from opc.managers.resources import ResourceNotFoundError, request_resource_reference
from opc.models import db, User

auth = HTTPBasicAuth()
auth.authenticate_header = lambda: "Authentication Required"

WORKER_EXT_ID = 'worker@opc'


@auth.verify_password
def verify_password(userid_or_token, password):
    g.user = User.verify_auth_token(userid_or_token, current_app.config['SECRET_KEY'])
    if not g.user:
        g.user = User.query.filter_by(ext_id=userid_or_token).first()
        if not g.user:
            return False
        if not g.user.check_password(password):
            return False
    return True


def create_worker():
    return create_user(WORKER_EXT_ID, current_app.config['SECRET_KEY'], is_admin=True)


def create_user(ext_id, password, is_admin=False):
    if User.query.filter_by(ext_id=ext_id).first():
        logging.info("user %s already exists" % ext_id)
        return None

    user = User(ext_id, password, is_admin=is_admin)
    db.session.add(user)
    db.session.commit()
    return user


def handles_manager_errors(f):
    """Turn the exceptions raised by managers into error responses"""

    @wraps(f)
    def decorated(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except ResourceNotFoundError as e:
            return '%s' % e, 404
        except (KeyVaultReferenceError, ValueError) as e:
            logging.info('invalid request: %s', e)
            return '%s' % e, 422

    return decorated


def get_resource_reference_or_abort(resource_group_name, provider_name, resource_type, resource_name):
    ref = request_resource_reference(resource_group_name, provider_name, resource_type, resource_name)
    if not ref:
        abort(404)
    return ref


def get_json_body():
    """The JSON body of the request as a dict, 400 when there is none"""
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        abort(400)
    return body
