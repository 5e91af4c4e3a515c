import flask_restful as restful
from flask import abort
from flask_restful import marshal_with, fields, reqparse
from sqlalchemy.exc import IntegrityError

from opc.forms import LockForm
from opc.models import db, Lock
from opc.utils import requires_admin
from opc.views.commons import auth

lock_fields = {
    'id': fields.String,
    'owner': fields.String,
    'acquired_at': fields.DateTime
}


class LockList(restful.Resource):

    @auth.login_required
    @requires_admin
    @marshal_with(lock_fields)
    def get(self):
        return Lock.query.all()


class LockView(restful.Resource):
    del_parser = reqparse.RequestParser()
    del_parser.add_argument('owner', type=str, location='args', default=None)

    @auth.login_required
    @requires_admin
    @marshal_with(lock_fields)
    def get(self, lock_id):
        lock = Lock.query.filter_by(id=lock_id).first()
        if not lock:
            abort(404)
        return lock

    @auth.login_required
    @requires_admin
    @marshal_with(lock_fields)
    def put(self, lock_id):
        form = LockForm()
        form.validate()
        if not form.owner.data:
            abort(400)
        lock = Lock(lock_id, form.owner.data)

        db.session.add(lock)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            abort(409)
        return lock

    @auth.login_required
    @requires_admin
    def delete(self, lock_id):
        args = self.del_parser.parse_args()
        q = Lock.query.filter_by(id=lock_id)
        if args.get('owner'):
            q = q.filter_by(owner=args.get('owner'))
        lock = q.first()
        if not lock:
            abort(404)
        db.session.delete(lock)
        db.session.commit()
