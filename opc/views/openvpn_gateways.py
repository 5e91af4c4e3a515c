import flask_restful as restful
from flask import Response
from flask_restful import reqparse

from opc.managers.openvpn import OpenVPNGatewayManager, ClientExistsError
from opc.managers.remote import get_remote_command_executor
from opc.managers.resources import NETWORK_SERVICES, TYPE_OPENVPN_GATEWAY
from opc.utils import requires_admin, is_safe_name
from opc.views.commons import auth, handles_manager_errors, get_resource_reference_or_abort, get_json_body


def get_gateway_or_abort(group_name, gateway_name):
    return get_resource_reference_or_abort(group_name, NETWORK_SERVICES, TYPE_OPENVPN_GATEWAY, gateway_name)


def get_manager():
    return OpenVPNGatewayManager(get_remote_command_executor())


def get_client_name(body):
    name = body.get('name')
    if not is_safe_name(name or ''):
        raise ValueError('invalid client name "%s"' % name)
    return name


class OpenVPNGatewayInfo(restful.Resource):
    @auth.login_required
    @requires_admin
    def get(self, group_name, gateway_name):
        ref = get_gateway_or_abort(group_name, gateway_name)
        return dict(hostName=ref.host_name)


class OpenVPNGatewayClients(restful.Resource):
    @auth.login_required
    @requires_admin
    @handles_manager_errors
    def get(self, group_name, gateway_name):
        ref = get_gateway_or_abort(group_name, gateway_name)
        return [dict(name=x) for x in get_manager().list_clients(ref)]

    @auth.login_required
    @requires_admin
    @handles_manager_errors
    def post(self, group_name, gateway_name):
        ref = get_gateway_or_abort(group_name, gateway_name)
        name = get_client_name(get_json_body())
        try:
            get_manager().add_client(ref, name)
        except ClientExistsError as e:
            return '%s' % e, 409
        return dict(name=name)

    @auth.login_required
    @requires_admin
    @handles_manager_errors
    def delete(self, group_name, gateway_name):
        ref = get_gateway_or_abort(group_name, gateway_name)
        get_manager().revoke_client(ref, get_client_name(get_json_body()))


class OpenVPNGatewayClientConfig(restful.Resource):
    parser = reqparse.RequestParser()
    parser.add_argument('clientName', type=str, location='args', required=True)

    @auth.login_required
    @requires_admin
    @handles_manager_errors
    def get(self, group_name, gateway_name):
        ref = get_gateway_or_abort(group_name, gateway_name)
        args = self.parser.parse_args()
        content = get_manager().generate_client_config(ref, args.clientName)
        return Response(content, mimetype='text/plain')


class OpenVPNGatewayConnections(restful.Resource):
    @auth.login_required
    @requires_admin
    def get(self, group_name, gateway_name):
        ref = get_gateway_or_abort(group_name, gateway_name)
        return get_manager().query_connections(ref)


class OpenVPNGatewayConfig(restful.Resource):
    @auth.login_required
    @requires_admin
    @handles_manager_errors
    def get(self, group_name, gateway_name):
        ref = get_gateway_or_abort(group_name, gateway_name)
        return get_manager().query_server_config(ref)

    @auth.login_required
    @requires_admin
    @handles_manager_errors
    def put(self, group_name, gateway_name):
        ref = get_gateway_or_abort(group_name, gateway_name)
        manager = get_manager()
        manager.update_server_config(ref, get_json_body())
        return manager.query_server_config(ref)
