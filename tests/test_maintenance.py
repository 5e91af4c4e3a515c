# Test fixture methods to be called from app context so we can access the db
import json
import logging
import time

import pytest
from flask import Flask

import opc.utils
from opc.client import OPCClient
from opc.maintenance.main import run_resource_log_cleanup
from opc.models import db, ResourceLog
from tests.conftest import PrimaryData

DAY = 24 * 3600


class MockResponseAdapter:
    """Adapt response from flask test client to requests"""

    def __init__(self, resp):
        self.resp = resp
        self.status_code = resp.status_code
        self.content = resp.get_data()
        self.text = resp.get_data(as_text=True)

    def json(self):
        return self.resp.json


class OPCClientMock(OPCClient):
    """OPCClient that talks to the flask test client instead of a real API"""

    def __init__(self, request_api):
        super().__init__(None, 'api/v1')
        self.request_api = request_api

    def login(self, ext_id, password):
        auth_url = '%s/sessions' % self.api_base_url
        auth_credentials = dict(ext_id=ext_id, password=password)
        r = self.request_api.post(auth_url, json=auth_credentials)
        if r.status_code != 200:
            raise RuntimeError('Login failed, status: %d, ext_id "%s", auth_url "%s"' %
                               (r.status_code, ext_id, auth_url))
        self.token = json.loads(r.get_data(as_text=True)).get('token')
        self.auth = opc.utils.b64encode_string('%s:%s' % (self.token, '')).replace('\n', '')

    def do_modify(self, method, object_url, json_data=None):
        headers = {
            'Accept': 'application/json',
            'Authorization': 'Basic %s' % self.auth,
        }
        method_impl = getattr(self.request_api, method)
        resp = method_impl('%s/%s' % (self.api_base_url, object_url), json=json_data, headers=headers)
        return MockResponseAdapter(resp)


def add_log(resource_id, age_days):
    ts = time.time() - age_days * DAY
    log = ResourceLog(resource_id, 'Backup of: x', ResourceLog.STATUS_FINISHED, 'log', ts - 60, ts)
    db.session.add(log)
    return log


def test_resource_log_cleanup(app: Flask, pri_data: PrimaryData):
    old = add_log('bv1', 100)
    recent = add_log('bv1', 10)
    other_recent = add_log('kv1', 0)
    db.session.commit()
    old_id, kept_ids = old.id, {recent.id, other_recent.id}

    opc_client = OPCClientMock(app.test_client())
    opc_client.login(pri_data.known_admin_ext_id, pri_data.known_admin_password)
    run_resource_log_cleanup(opc_client, logging.getLogger(), 90)

    remaining = {x.id for x in ResourceLog.query.all()}
    assert old_id not in remaining
    assert remaining == kept_ids


def test_resource_log_cleanup_requires_admin(app: Flask, pri_data: PrimaryData):
    opc_client = OPCClientMock(app.test_client())
    opc_client.login(pri_data.known_user_ext_id, pri_data.known_user_password)
    with pytest.raises(RuntimeError):
        run_resource_log_cleanup(opc_client, logging.getLogger(), 90)
