"""
Thin wrapper around easy-rsa on a managed host.

Each operation is a fixed sequence of easyrsa invocations in the CA directory.
Nothing is retried or rolled back: a failing step raises RemoteCommandError and
leaves the PKI as it is. Layout of a CA directory::

    <cadir>/pki/ca.crt
    <cadir>/pki/issued/<name>.crt
    <cadir>/pki/private/<name>.key
    <cadir>/pki/crl.pem
    <cadir>/pki/dh.pem
"""
import os

from opc.managers.remote import RemoteFileSystem


class EasyRSAManager:
    def __init__(self, executor, host_id):
        self.executor = executor
        self.host_id = host_id

    def _easyrsa(self, cadir, *args):
        self.executor.execute(self.host_id, ['./easyrsa'] + list(args), sudo=True, working_dir=cadir)

    def create_ca_dir(self, cadir):
        self.executor.execute(self.host_id, ['make-cadir', cadir], sudo=True)
        self._easyrsa(cadir, 'init-pki')

    def create_ca(self, cadir, common_name, key_size):
        self.create_ca_dir(cadir)
        self._easyrsa(cadir, '--batch', '--keysize=%d' % key_size, '--req-cn=%s' % common_name, 'build-ca', 'nopass')
        self._easyrsa(cadir, 'gen-crl')
        self._easyrsa(cadir, '--batch', '--keysize=%d' % key_size, 'gen-dh')

    def create_client_key_pair(self, cadir, client_name):
        self._easyrsa(cadir, '--batch', '--req-cn=%s' % client_name, 'build-client-full', client_name, 'nopass')

    add_client = create_client_key_pair

    def create_server_key_pair(self, cadir, server_name, key_size):
        self._easyrsa(cadir, '--batch', '--keysize=%d' % key_size, 'build-server-full', server_name, 'nopass')

    def revoke_client(self, cadir, client_name):
        self._easyrsa(cadir, '--batch', 'revoke', client_name)
        self._easyrsa(cadir, 'gen-crl')

    revoke_certificate = revoke_client

    def list_clients(self, cadir, server_name):
        fs = RemoteFileSystem(self.executor, self.host_id)
        names = []
        for file_name in fs.list_directory(os.path.join(cadir, 'pki', 'issued')):
            if not file_name.endswith('.crt'):
                continue
            name = file_name[:-len('.crt')]
            if name != server_name:
                names.append(name)
        return sorted(names)

    @staticmethod
    def get_ca_paths(cadir):
        pki = os.path.join(cadir, 'pki')
        return dict(
            ca_cert_path=os.path.join(pki, 'ca.crt'),
            crl_path=os.path.join(pki, 'crl.pem'),
            dh_path=os.path.join(pki, 'dh.pem'),
        )

    @staticmethod
    def get_cert_and_key_paths(cadir, name):
        pki = os.path.join(cadir, 'pki')
        return dict(
            cert_path=os.path.join(pki, 'issued', name + '.crt'),
            key_path=os.path.join(pki, 'private', name + '.key'),
        )
