import flask_restful as restful
from flask import abort
from flask_restful import marshal_with, fields

from opc.managers.process_tracker import get_process_tracker_manager
from opc.utils import requires_admin
from opc.views.commons import auth

process_fields = {
    'id': fields.Integer,
    'title': fields.String,
    'resource_id': fields.String,
    'status': fields.Integer,
    'start_ts': fields.Float,
    'end_ts': fields.Float,
}

process_fields_with_text = dict(process_fields, text=fields.String(attribute='full_text'))


class ProcessList(restful.Resource):
    @auth.login_required
    @requires_admin
    @marshal_with(process_fields)
    def get(self):
        return get_process_tracker_manager().list()


class ProcessView(restful.Resource):
    @auth.login_required
    @requires_admin
    @marshal_with(process_fields_with_text)
    def get(self, process_id):
        tracker = get_process_tracker_manager().get(process_id)
        if not tracker:
            abort(404)
        return tracker
