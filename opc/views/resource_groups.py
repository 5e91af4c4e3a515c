import logging

import flask_restful as restful
from flask import abort
from flask_restful import marshal_with, fields, reqparse

from opc.forms import ResourceGroupForm, ResourceForm
from opc.managers import hosts as hosts_manager
from opc.managers.deployment import deploy_resource, delete_resource_from_host
from opc.managers.resources import (
    request_resource_group, request_resource, request_resource_logs, is_known_resource_type,
    delete_resource_logs_older_than, ResourceReference
)
from opc.models import db, ResourceGroup, ResourceLog
from opc.utils import requires_admin
from opc.views.commons import auth, handles_manager_errors

resource_group_fields = {
    'id': fields.String,
    'name': fields.String,
}

resource_fields = {
    'id': fields.String,
    'name': fields.String,
    'resource_provider_name': fields.String,
    'resource_type': fields.String,
    'storage_id': fields.String,
    'external_id': fields.String,
    'host_name': fields.String,
}

resource_log_fields = {
    'id': fields.String,
    'resource_id': fields.String,
    'title': fields.String,
    'status': fields.Integer,
    'start_ts': fields.Float,
    'end_ts': fields.Float,
}

resource_log_fields_with_text = dict(resource_log_fields, log=fields.String)


def get_resource_group_or_abort(group_name):
    group = request_resource_group(group_name)
    if not group:
        abort(404)
    return group


def get_resource_or_abort(group_name, provider_name, resource_type, resource_name):
    resource = request_resource(group_name, provider_name, resource_type, resource_name)
    if not resource:
        abort(404)
    return resource


class ResourceGroupList(restful.Resource):
    @auth.login_required
    @requires_admin
    @marshal_with(resource_group_fields)
    def get(self):
        return ResourceGroup.query.order_by(ResourceGroup.name).all()

    @auth.login_required
    @requires_admin
    @marshal_with(resource_group_fields)
    def post(self):
        form = ResourceGroupForm()
        if not form.validate_on_submit():
            logging.warning('validation error on creating resource group: %s', form.errors)
            abort(422)
        if request_resource_group(form.name.data):
            abort(409, 'resource group %s already exists' % form.name.data)
        group = ResourceGroup(form.name.data)
        db.session.add(group)
        db.session.commit()
        return group


class ResourceGroupView(restful.Resource):
    @auth.login_required
    @requires_admin
    @marshal_with(resource_group_fields)
    def get(self, group_name):
        return get_resource_group_or_abort(group_name)

    @auth.login_required
    @requires_admin
    def delete(self, group_name):
        group = get_resource_group_or_abort(group_name)
        if group.resources.count():
            return 'resource group %s still has resources' % group_name, 409
        db.session.delete(group)
        db.session.commit()


class ResourceList(restful.Resource):
    @auth.login_required
    @requires_admin
    @marshal_with(resource_fields)
    def get(self, group_name):
        group = get_resource_group_or_abort(group_name)
        return group.resources.all()

    @auth.login_required
    @requires_admin
    @handles_manager_errors
    @marshal_with(resource_fields)
    def post(self, group_name):
        group = get_resource_group_or_abort(group_name)
        form = ResourceForm()
        if not form.validate_on_submit():
            logging.warning('validation error on creating resource: %s', form.errors)
            abort(422)
        if not is_known_resource_type(form.provider_name.data, form.resource_type.data):
            abort(422, 'unknown resource type %s/%s' % (form.provider_name.data, form.resource_type.data))
        storage = hosts_manager.request_host_storage(form.storage_id.data)
        if not storage:
            abort(422, 'unknown storage %s' % form.storage_id.data)
        if request_resource(group_name, form.provider_name.data, form.resource_type.data, form.name.data):
            abort(409)

        parser = reqparse.RequestParser()
        parser.add_argument('properties', type=dict, location='json', default={})
        args = parser.parse_args()

        return deploy_resource(
            group, storage, form.provider_name.data, form.resource_type.data, form.name.data, args.properties or {})


class ResourceView(restful.Resource):
    @auth.login_required
    @requires_admin
    @marshal_with(resource_fields)
    def get(self, group_name, provider_name, resource_type, resource_name):
        return get_resource_or_abort(group_name, provider_name, resource_type, resource_name)

    @auth.login_required
    @requires_admin
    def delete(self, group_name, provider_name, resource_type, resource_name):
        resource = get_resource_or_abort(group_name, provider_name, resource_type, resource_name)
        delete_resource_from_host(ResourceReference.from_resource(resource))


class ResourceLogList(restful.Resource):
    @auth.login_required
    @requires_admin
    @marshal_with(resource_log_fields)
    def get(self, group_name, provider_name, resource_type, resource_name):
        resource = get_resource_or_abort(group_name, provider_name, resource_type, resource_name)
        return request_resource_logs(resource.id)


class ResourceLogCleanup(restful.Resource):
    parser = reqparse.RequestParser()
    parser.add_argument('older_than_days', type=int, location='args', required=True)

    @auth.login_required
    @requires_admin
    def delete(self):
        args = self.parser.parse_args()
        if args.older_than_days < 1:
            abort(422, 'older_than_days must be at least 1')
        return dict(deleted=delete_resource_logs_older_than(args.older_than_days))


class ResourceLogView(restful.Resource):
    @auth.login_required
    @requires_admin
    @marshal_with(resource_log_fields_with_text)
    def get(self, log_id):
        log = db.session.get(ResourceLog, log_id)
        if not log:
            abort(404)
        return log
