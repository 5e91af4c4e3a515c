import pytest

from opc.config import _parse_env_value, resolve_configuration_value
from opc.utils import is_safe_name, iso_timestamp, parse_iso_timestamp, b64encode_string


@pytest.mark.parametrize('name,expected', [
    ('vault1', True),
    ('my.key-2_x', True),
    ('', False),
    ('.hidden', False),
    ('../etc', False),
    ('a/b', False),
    ('with space', False),
    ('x' * 129, False),
    ('shadow\n', False),
])
def test_is_safe_name(name, expected):
    assert is_safe_name(name) == expected


def test_iso_timestamp():
    assert iso_timestamp(0) == '1970-01-01T00:00:00.000Z'
    assert iso_timestamp(1700000000.5) == '2023-11-14T22:13:20.500Z'
    assert iso_timestamp().endswith('Z')


def test_parse_iso_timestamp():
    assert parse_iso_timestamp('1970-01-01T00:00:00.000Z') == 0
    assert parse_iso_timestamp(iso_timestamp(1700000000.5)) == 1700000000.5
    with pytest.raises(ValueError):
        parse_iso_timestamp('lost+found')


def test_b64encode_string():
    assert b64encode_string('token:') == 'dG9rZW46'


def test_parse_env_value():
    assert _parse_env_value('true') is True
    assert _parse_env_value('False') is False
    assert _parse_env_value('42') == 42
    assert _parse_env_value('0.5') == 0.5
    assert _parse_env_value('ssh') == 'ssh'


def test_resolve_configuration_value_from_environment(monkeypatch):
    monkeypatch.setenv('OPC_MOUNT_ROOT', '/mnt/opc')
    assert resolve_configuration_value('MOUNT_ROOT', '/media/opc') == '/mnt/opc'
    monkeypatch.delenv('OPC_MOUNT_ROOT')
    monkeypatch.setattr('opc.config.CONFIG_FILE', '/nonexistent/config.yaml')
    assert resolve_configuration_value('MOUNT_ROOT', '/media/opc') == '/media/opc'
