"""
OpenVPN gateways: a PKI managed by easy-rsa, one openvpn server instance run by
systemd, and the client configuration files handed out to users.
"""
import ipaddress
import logging
import os
import re

from opc.managers.easyrsa import EasyRSAManager
from opc.managers.remote import RemoteFileSystem
from opc.managers.resources import request_config, update_or_insert_config, ResourceNotFoundError

KEY_SIZES = (2048, 4096)
PROTOCOLS = ('udp', 'tcp')
MAX_VERBOSITY = 11

# RFC 1123 host name, dot separated labels
HOST_NAME_PATTERN = re.compile(
    r'(?=.{1,253}\Z)[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*'
)

SERVER_CONFIG_DIR = '/etc/openvpn/server'

SERVER_CONFIG_TEMPLATE = """port {port}
proto {protocol}
dev tun
ca {ca_cert_path}
cert {cert_path}
key {key_path}
dh {dh_path}
crl-verify {crl_path}
server {network} {netmask}
topology subnet
keepalive 10 120
cipher {cipher}
auth {authenticationAlgorithm}
persist-key
persist-tun
status {status_path}
status-version 2
verb {verbosity}
"""

CLIENT_CONFIG_TEMPLATE = """client
dev tun
proto {protocol}
remote {domainName} {port}
resolv-retry infinite
nobind
persist-key
persist-tun
remote-cert-tls server
cipher {cipher}
auth {authenticationAlgorithm}
verb {verbosity}
<ca>
{ca}
</ca>
<cert>
{cert}
</cert>
<key>
{key}
</key>
"""

# column layout of CLIENT_LIST in openvpn 2.4+ status files, used when the file has no header for it
DEFAULT_CLIENT_LIST_HEADER = [
    'Common Name', 'Real Address', 'Virtual Address', 'Virtual IPv6 Address', 'Bytes Received', 'Bytes Sent',
    'Connected Since', 'Connected Since (time_t)', 'Username', 'Client ID', 'Peer ID',
]


class ClientExistsError(Exception):
    pass


def default_server_config():
    return dict(
        port=1194,
        protocol='udp',
        virtualServerAddressRange='10.8.0.0/24',
        cipher='AES-256-CBC',
        verbosity=1,
        authenticationAlgorithm='SHA256',
    )


def _is_int(value):
    return isinstance(value, int) and not isinstance(value, bool)


def validate_server_config(server_config):
    """Merge with the defaults and validate, raises ValueError"""
    config = default_server_config()
    config.update({k: v for k, v in server_config.items() if k in config})

    if not _is_int(config['port']) or not 1 <= config['port'] <= 65535:
        raise ValueError('port must be between 1 and 65535')
    if config['protocol'] not in PROTOCOLS:
        raise ValueError('protocol must be one of %s' % ', '.join(PROTOCOLS))
    try:
        ipaddress.IPv4Network(config['virtualServerAddressRange'])
    except (ipaddress.AddressValueError, ipaddress.NetmaskValueError, ValueError):
        raise ValueError('invalid virtualServerAddressRange "%s"' % config['virtualServerAddressRange'])
    if not _is_int(config['verbosity']) or not 0 <= config['verbosity'] <= MAX_VERBOSITY:
        raise ValueError('verbosity must be between 0 and %d' % MAX_VERBOSITY)
    for key in ('cipher', 'authenticationAlgorithm'):
        if not isinstance(config[key], str) or not config[key] or any(c.isspace() for c in config[key]):
            raise ValueError('invalid %s' % key)
    return config


def validate_deployment_properties(properties):
    domain_name = properties.get('domainName')
    if not isinstance(domain_name, str) or not HOST_NAME_PATTERN.fullmatch(domain_name):
        raise ValueError('domainName must be a valid host name')
    if properties.get('keySize') not in KEY_SIZES:
        raise ValueError('keySize must be one of %s' % ', '.join(str(x) for x in KEY_SIZES))
    return dict(
        domainName=domain_name,
        keySize=properties['keySize'],
        server=validate_server_config(properties.get('server') or {}),
    )


def render_server_config(server_config, ca_paths, server_paths, status_path):
    network = ipaddress.IPv4Network(server_config['virtualServerAddressRange'])
    values = dict(server_config)
    values.update(ca_paths)
    values.update(server_paths)
    values.update(network=network.network_address, netmask=network.netmask, status_path=status_path)
    content = SERVER_CONFIG_TEMPLATE.format(**values)
    if server_config['protocol'] == 'udp':
        content += 'explicit-exit-notify 1\n'
    return content


def extract_pem(text):
    """easy-rsa prefixes issued certificates with a text dump, keep only the PEM block"""
    idx = text.find('-----BEGIN')
    return text[idx:].strip() if idx >= 0 else text.strip()


def render_client_config(config, ca_cert, client_cert, client_key):
    values = dict(config['server'])
    values.update(
        domainName=config['domainName'],
        ca=extract_pem(ca_cert),
        cert=extract_pem(client_cert),
        key=client_key.strip(),
    )
    return CLIENT_CONFIG_TEMPLATE.format(**values)


def parse_status_file(content):
    """Parse the CLIENT_LIST records of an openvpn status file (status-version 2)"""
    header = DEFAULT_CLIENT_LIST_HEADER
    connections = []
    for line in content.splitlines():
        fields = line.strip().split(',')
        if fields[0] == 'HEADER' and len(fields) > 1 and fields[1] == 'CLIENT_LIST':
            header = fields[2:]
        elif fields[0] == 'CLIENT_LIST':
            record = dict(zip(header, fields[1:]))
            connections.append(dict(
                clientName=record.get('Common Name'),
                realAddress=record.get('Real Address'),
                virtualAddress=record.get('Virtual Address'),
                bytesReceived=int(record.get('Bytes Received') or 0),
                bytesSent=int(record.get('Bytes Sent') or 0),
                connectedSince=record.get('Connected Since'),
            ))
    return connections


class OpenVPNGatewayManager:
    def __init__(self, executor):
        self.executor = executor

    @staticmethod
    def get_pki_path(ref):
        return os.path.join(ref.storage_path, 'pki')

    @staticmethod
    def get_status_path(ref):
        return os.path.join(ref.storage_path, 'openvpn-status.log')

    @staticmethod
    def get_service_name(ref):
        return 'openvpn-server@opc-%s' % ref.id

    @staticmethod
    def get_server_config_path(ref):
        return os.path.join(SERVER_CONFIG_DIR, 'opc-%s.conf' % ref.id)

    def _easyrsa(self, ref):
        return EasyRSAManager(self.executor, ref.host_id)

    def _systemctl(self, ref, *args):
        self.executor.execute(ref.host_id, ['systemctl'] + list(args) + [self.get_service_name(ref)], sudo=True)

    def read_config(self, ref):
        config = request_config(ref.id)
        if not config:
            raise ResourceNotFoundError('gateway %s has not been deployed' % ref.external_id)
        return config

    def deploy(self, ref, properties, tracker):
        config = validate_deployment_properties(properties)
        update_or_insert_config(ref.id, config)

        pki_path = self.get_pki_path(ref)
        easyrsa = self._easyrsa(ref)
        tracker.add('Creating certificate authority')
        easyrsa.create_ca(pki_path, config['domainName'], config['keySize'])
        tracker.add('Creating server certificate')
        easyrsa.create_server_key_pair(pki_path, config['domainName'], config['keySize'])

        self.write_server_config(ref, config)
        tracker.add('Starting', self.get_service_name(ref))
        self._systemctl(ref, 'enable', '--now')

    def teardown(self, ref, tracker):
        tracker.add('Stopping', self.get_service_name(ref))
        self._systemctl(ref, 'disable', '--now')
        RemoteFileSystem(self.executor, ref.host_id).remove_file(self.get_server_config_path(ref))

    def write_server_config(self, ref, config):
        pki_path = self.get_pki_path(ref)
        content = render_server_config(
            config['server'],
            EasyRSAManager.get_ca_paths(pki_path),
            EasyRSAManager.get_cert_and_key_paths(pki_path, config['domainName']),
            self.get_status_path(ref),
        )
        RemoteFileSystem(self.executor, ref.host_id).write_file(self.get_server_config_path(ref), content)

    def query_server_config(self, ref):
        return self.read_config(ref)['server']

    def update_server_config(self, ref, server_config):
        config = self.read_config(ref)
        config['server'] = validate_server_config(server_config)
        update_or_insert_config(ref.id, config)
        self.write_server_config(ref, config)
        self._systemctl(ref, 'restart')
        logging.info('updated server config of %s', ref.external_id)

    def list_clients(self, ref):
        config = self.read_config(ref)
        return self._easyrsa(ref).list_clients(self.get_pki_path(ref), config['domainName'])

    def add_client(self, ref, name):
        if name in self.list_clients(ref) or name == self.read_config(ref)['domainName']:
            raise ClientExistsError('client "%s" already exists' % name)
        self._easyrsa(ref).add_client(self.get_pki_path(ref), name)

    def revoke_client(self, ref, name):
        if name not in self.list_clients(ref):
            raise ResourceNotFoundError('client "%s" does not exist' % name)
        self._easyrsa(ref).revoke_client(self.get_pki_path(ref), name)

    def generate_client_config(self, ref, name):
        config = self.read_config(ref)
        if name not in self.list_clients(ref):
            raise ResourceNotFoundError('client "%s" does not exist' % name)

        pki_path = self.get_pki_path(ref)
        fs = RemoteFileSystem(self.executor, ref.host_id)
        paths = EasyRSAManager.get_cert_and_key_paths(pki_path, name)
        return render_client_config(
            config,
            fs.read_text_file(EasyRSAManager.get_ca_paths(pki_path)['ca_cert_path']),
            fs.read_text_file(paths['cert_path']),
            fs.read_text_file(paths['key_path']),
        )

    def query_connections(self, ref):
        fs = RemoteFileSystem(self.executor, ref.host_id)
        status_path = self.get_status_path(ref)
        if not fs.exists(status_path):
            return []
        return parse_status_file(fs.read_text_file(status_path))
