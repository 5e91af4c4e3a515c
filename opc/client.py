#!/usr/bin/env python

import argparse
import json
import logging
from time import time

import requests
from jose import jwt
from requests.adapters import HTTPAdapter

import opc.utils
from opc.config import RuntimeConfig

HANDLED_FAILURE_CODES = (400, 403, 404, 409, 422, 500)


class UnhandledStatusError(Exception):
    def __init__(self, status_code, raw_body):
        super().__init__('unhandled response status %s: %s' % (status_code, raw_body))
        self.status_code = status_code
        self.raw_body = raw_body


class APIResponse:
    """Status code, decoded JSON data (if any) and the raw body of an API response"""

    def __init__(self, status_code, data=None, raw_body=''):
        self.status_code = status_code
        self.data = data
        self.raw_body = raw_body

    @staticmethod
    def from_requests_response(resp):
        data = None
        if resp.content:
            try:
                data = resp.json()
            except ValueError:
                data = None
        return APIResponse(resp.status_code, data, resp.text)


class HandledResponse:
    def __init__(self, ok, data=None, message=None):
        self.ok = ok
        self.data = data
        self.message = message


def handle_response(response: APIResponse):
    """
    Interpret the status of an API response. Expected failures are returned with the raw body as the
    message, statuses nobody expects raise UnhandledStatusError.
    """
    if response.status_code == 200:
        return HandledResponse(True, data=response.data)
    if response.status_code == 204:
        return HandledResponse(True)
    if response.status_code in HANDLED_FAILURE_CODES:
        logging.warning('API request failed with status %d: %s', response.status_code, response.raw_body)
        return HandledResponse(False, message=response.raw_body)
    raise UnhandledStatusError(response.status_code, response.raw_body)


class OPCClient:
    def __init__(self, token, api_base_url, ssl_verify=True):
        self.token = token
        self.api_base_url = api_base_url
        self.ssl_verify = ssl_verify
        self.auth = opc.utils.b64encode_string('%s:%s' % (token, '')).replace('\n', '')
        self.session = requests.Session()
        self.session.mount('http://', HTTPAdapter(max_retries=10))

    def check_and_refresh_session(self, ext_id, password):
        # renew worker session 15 minutes before expiration
        try:
            claims = jwt.get_unverified_claims(self.token)
            remaining_time = claims['exp'] - time()
            if remaining_time < 900:
                logging.info("Token will expire soon, relogin %s" % ext_id)
                self.login(ext_id, password)
        except Exception as e:
            logging.warning(e)

    def login(self, ext_id, password):
        logging.debug(f'login("{ext_id}")')
        auth_url = '%s/sessions' % self.api_base_url
        auth_credentials = dict(ext_id=ext_id, password=password)
        r = self.session.post(auth_url, json=auth_credentials, verify=self.ssl_verify)
        if r.status_code != 200:
            raise RuntimeError('Login failed, status: %d, ext_id "%s", auth_url "%s"' %
                               (r.status_code, ext_id, auth_url))
        self.token = json.loads(r.text).get('token')
        self.auth = opc.utils.b64encode_string('%s:%s' % (self.token, '')).replace('\n', '')

    def do_get(self, object_url, payload=None):
        headers = {'Accept': 'application/json', 'Authorization': 'Basic %s' % self.auth}
        url = '%s/%s' % (self.api_base_url, object_url)
        resp = self.session.get(url, data=payload, headers=headers, verify=self.ssl_verify, timeout=(5, 5))
        return resp

    def do_modify(self, method, object_url, json_data=None):
        modify_methods = dict(
            post=self.session.post,
            put=self.session.put,
            delete=self.session.delete
        )

        headers = {
            'Content-type': 'application/json',
            'Accept': 'application/json',
            'Authorization': 'Basic %s' % self.auth}
        url = '%s/%s' % (self.api_base_url, object_url)
        method_impl = modify_methods[method]
        resp = method_impl(url, json=json_data, headers=headers, verify=self.ssl_verify, timeout=(5, 5))
        return resp

    def do_post(self, object_url, json_data=None):
        return self.do_modify(method='post', object_url=object_url, json_data=json_data)

    def do_put(self, object_url, json_data=None):
        return self.do_modify(method='put', object_url=object_url, json_data=json_data)

    def do_delete(self, object_url, json_data=None):
        return self.do_modify(method='delete', object_url=object_url, json_data=json_data)

    def request(self, method, object_url, json_data=None):
        """Make a request and interpret the response with handle_response()"""
        if method == 'get':
            resp = self.do_get(object_url)
        else:
            resp = self.do_modify(method, object_url, json_data=json_data)
        return handle_response(APIResponse.from_requests_response(resp))

    def get_backup_vaults(self):
        res = self.request('get', 'backupVaults')
        if not res.ok:
            raise RuntimeError('Cannot fetch backup vaults: %s' % res.message)
        return res.data

    def start_backup(self, resource_group_name, vault_name):
        """Start the backup process of a vault, returns the process id or None when a backup is already running"""
        resp = self.do_post('resourceProviders/%s/backup-services/backup-vault/%s' % (resource_group_name, vault_name))
        if resp.status_code == 409:
            return None
        res = handle_response(APIResponse.from_requests_response(resp))
        if not res.ok:
            raise RuntimeError('Cannot start backup of %s/%s: %s' % (resource_group_name, vault_name, res.message))
        return res.data.get('processId')

    def delete_old_resource_logs(self, older_than_days):
        res = self.request('delete', 'resourceLogs?older_than_days=%d' % older_than_days)
        if not res.ok:
            raise RuntimeError('Cannot delete old resource logs: %s' % res.message)
        return res.data.get('deleted')

    def obtain_lock(self, lock_id, owner):
        resp = self.do_put('locks/%s' % lock_id, json_data=dict(owner=owner))
        if resp.status_code == 200:
            return lock_id
        if resp.status_code == 409:
            return None

        raise RuntimeError('Error obtaining lock: %s, %s' % (lock_id, resp.reason))

    def release_lock(self, lock_id, owner=None):
        if owner:
            resp = self.do_delete('locks/%s?owner=%s' % (lock_id, owner))
        else:
            resp = self.do_delete('locks/%s' % lock_id)
        if resp.status_code == 200:
            return lock_id

        raise RuntimeError('Error deleting lock: %s, %s' % (lock_id, resp.reason))


if __name__ == '__main__':
    config = RuntimeConfig()

    opc.utils.init_logging(config, 'client')

    parser = argparse.ArgumentParser(description='OpenPrivateCloud API command line client')
    parser.add_argument('-a', '--api_base_url', default=config.INTERNAL_API_BASE_URL)
    subparsers = parser.add_subparsers(help='generate auth token', dest='command')
    parser_login = subparsers.add_parser('auth')
    parser_login.add_argument('-e', '--ext_id', help='ext_id')
    parser_login.add_argument('-p', '--password', help='password')
    args = parser.parse_args()

    if args.command == 'auth':
        client = OPCClient(None, args.api_base_url)
        client.login(args.ext_id, args.password)
        print(client.auth)
    else:
        parser.print_help()
