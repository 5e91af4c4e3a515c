import logging

import flask_restful as restful
from flask import abort
from flask_restful import marshal_with, fields

from opc.forms import HostForm, HostStorageForm
from opc.managers import hosts as hosts_manager
from opc.utils import requires_admin
from opc.views.commons import auth

host_fields = {
    'id': fields.String,
    'host_name': fields.String,
}

host_storage_fields = {
    'id': fields.String,
    'host_id': fields.String,
    'path': fields.String,
    'file_system_type': fields.String,
}


class HostList(restful.Resource):
    @auth.login_required
    @requires_admin
    @marshal_with(host_fields)
    def get(self):
        return hosts_manager.request_hosts()

    @auth.login_required
    @requires_admin
    @marshal_with(host_fields)
    def post(self):
        form = HostForm()
        if not form.validate_on_submit():
            logging.warning('validation error on adding host: %s', form.errors)
            abort(422)
        if hosts_manager.request_host(form.host_name.data):
            abort(409, 'host %s already exists' % form.host_name.data)
        return hosts_manager.add_host(form.host_name.data, form.password.data)


class HostView(restful.Resource):
    @auth.login_required
    @requires_admin
    @marshal_with(host_fields)
    def get(self, host_name):
        host = hosts_manager.request_host(host_name)
        if not host:
            abort(404)
        return host

    @auth.login_required
    @requires_admin
    def delete(self, host_name):
        host = hosts_manager.request_host(host_name)
        if not host:
            abort(404)
        if hosts_manager.host_has_resources(host):
            return 'host %s still has resources' % host_name, 409
        hosts_manager.delete_host(host_name)


class HostStorageList(restful.Resource):
    @auth.login_required
    @requires_admin
    @marshal_with(host_storage_fields)
    def get(self, host_name):
        host = hosts_manager.request_host(host_name)
        if not host:
            abort(404)
        return hosts_manager.request_host_storages(host.id)

    @auth.login_required
    @requires_admin
    @marshal_with(host_storage_fields)
    def post(self, host_name):
        host = hosts_manager.request_host(host_name)
        if not host:
            abort(404)
        form = HostStorageForm()
        if not form.validate_on_submit():
            logging.warning('validation error on adding host storage: %s', form.errors)
            abort(422)
        path = form.path.data.rstrip('/') or '/'
        if hosts_manager.request_host_storage_by_path(host.id, path):
            abort(409, 'storage %s already exists on host %s' % (path, host_name))
        return hosts_manager.add_host_storage(host.id, path, form.file_system_type.data or None)


class HostStorageView(restful.Resource):
    @auth.login_required
    @requires_admin
    @marshal_with(host_storage_fields)
    def get(self, storage_id):
        storage = hosts_manager.request_host_storage(storage_id)
        if not storage:
            abort(404)
        return storage

    @auth.login_required
    @requires_admin
    def delete(self, storage_id):
        storage = hosts_manager.request_host_storage(storage_id)
        if not storage:
            abort(404)
        if storage.resources.count():
            return 'storage %s still has resources' % storage_id, 409
        hosts_manager.delete_host_storage(storage_id)
