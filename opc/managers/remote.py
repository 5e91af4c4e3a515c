"""
Remote command execution on managed hosts.

A command is one of

- a list of arguments, e.g. ``['mkdir', '-p', '/srv/x']``
- a ``Pipe`` of two commands (``source | target``)
- a ``RedirectStdout`` of a command into a file (``source > path``)

Pipes and redirects nest. Commands are rendered into a single shell line with
every argument quoted. Commands that need root are wrapped into
``sudo -k -S -p '' sh -c '<line>'`` and the host password is fed on stdin.
"""
import logging
import shlex
import socket
import time

import paramiko
from flask import current_app

from opc.models import db, Host

EXTENSION_KEY = 'opc_remote_command_executor'
RECV_BUFFER_SIZE = 32768


class RemoteCommandError(Exception):
    def __init__(self, host_name, command_line, exit_code, stderr):
        super().__init__(
            'command "%s" on host %s failed with exit code %s: %s' % (command_line, host_name, exit_code, stderr))
        self.host_name = host_name
        self.command_line = command_line
        self.exit_code = exit_code
        self.stderr = stderr


class Pipe:
    def __init__(self, source, target):
        self.source = source
        self.target = target

    def __repr__(self):
        return render_command(self)


class RedirectStdout:
    def __init__(self, source, path):
        self.source = source
        self.path = path

    def __repr__(self):
        return render_command(self)


class CommandResult:
    def __init__(self, exit_code, stdout, stderr):
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


def render_command(command):
    """Render a command into one shell line, quoting every argument"""
    if isinstance(command, Pipe):
        return '%s | %s' % (render_command(command.source), render_command(command.target))
    if isinstance(command, RedirectStdout):
        return '%s > %s' % (render_command(command.source), shlex.quote(command.path))
    if isinstance(command, (list, tuple)):
        if not command:
            raise ValueError('empty command')
        return ' '.join(shlex.quote(str(arg)) for arg in command)
    raise ValueError('unknown command type %s' % type(command).__name__)


def build_command_line(command, sudo=False, working_dir=None):
    line = render_command(command)
    if working_dir:
        line = 'cd %s && %s' % (shlex.quote(working_dir), line)
    if sudo:
        # -k: always read the password from stdin, also when credentials are cached
        line = "sudo -k -S -p '' sh -c %s" % shlex.quote(line)
    return line


def _to_bytes(data):
    if data is None:
        return b''
    if isinstance(data, str):
        return data.encode('utf-8')
    return data


class RemoteCommandExecutor:
    """Base for the executors. Subclasses implement run_line()."""

    def run_line(self, host, command_line, stdin_data):
        raise NotImplementedError()

    def execute(self, host_id, command, sudo=False, working_dir=None, stdin=None, check=True):
        host = db.session.get(Host, host_id)
        if not host:
            raise ValueError('host %s does not exist' % host_id)

        command_line = build_command_line(command, sudo=sudo, working_dir=working_dir)
        stdin_data = _to_bytes(stdin)
        if sudo:
            stdin_data = _to_bytes(host.password) + b'\n' + stdin_data

        logging.debug('executing on %s: %s', host.host_name, command_line)
        result = self.run_line(host, command_line, stdin_data)
        if check and result.exit_code != 0:
            raise RemoteCommandError(host.host_name, command_line, result.exit_code, result.stderr)
        return result

    def execute_for_stdout(self, host_id, command, sudo=False, working_dir=None, stdin=None):
        return self.execute(host_id, command, sudo=sudo, working_dir=working_dir, stdin=stdin).stdout


def read_channel_output(channel, poll_interval=0.01):
    """Read stdout and stderr of a channel side by side until it closes, so that neither one fills up"""
    out_chunks = []
    err_chunks = []
    while True:
        received = False
        while channel.recv_ready():
            out_chunks.append(channel.recv(RECV_BUFFER_SIZE))
            received = True
        while channel.recv_stderr_ready():
            err_chunks.append(channel.recv_stderr(RECV_BUFFER_SIZE))
            received = True
        if channel.closed and not channel.recv_ready() and not channel.recv_stderr_ready():
            break
        if not received:
            time.sleep(poll_interval)

    return (
        b''.join(out_chunks).decode('utf-8', errors='replace'),
        b''.join(err_chunks).decode('utf-8', errors='replace'),
    )


class SSHCommandExecutor(RemoteCommandExecutor):
    def __init__(self, user, port=22, timeout=30):
        self.user = user
        self.port = port
        self.timeout = timeout

    def _connect(self, host):
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        client.connect(
            host.host_name,
            port=self.port,
            username=self.user,
            password=host.password,
            look_for_keys=False,
            allow_agent=False,
            timeout=self.timeout,
        )
        return client

    def run_line(self, host, command_line, stdin_data):
        try:
            client = self._connect(host)
        except (paramiko.SSHException, socket.error) as e:
            raise RemoteCommandError(host.host_name, command_line, -1, 'connection failed: %s' % e)

        try:
            stdin, stdout, stderr = client.exec_command(command_line)
            if stdin_data:
                stdin.write(stdin_data)
                stdin.flush()
            stdin.channel.shutdown_write()
            out, err = read_channel_output(stdout.channel)
            exit_code = stdout.channel.recv_exit_status()
        finally:
            client.close()

        return CommandResult(exit_code, out, err)


class DummyCommandExecutor(RemoteCommandExecutor):
    """Records the executed commands and answers with canned output. Used in development and tests."""

    def __init__(self):
        self.executed = []
        self.responses = []

    def add_response(self, prefix, stdout='', exit_code=0, stderr=''):
        """Answer commands whose rendered line starts with prefix. Later responses take precedence."""
        self.responses.insert(0, (prefix, CommandResult(exit_code, stdout, stderr)))

    def reset(self):
        self.executed = []
        self.responses = []

    def run_line(self, host, command_line, stdin_data):
        self.executed.append(dict(host_name=host.host_name, command_line=command_line, stdin=stdin_data))
        # match against the command itself, not the sudo wrapper
        inner_line = command_line
        if command_line.startswith('sudo '):
            inner_line = shlex.split(command_line)[-1]
        for prefix, result in self.responses:
            if inner_line.startswith(prefix):
                return result
        return CommandResult(0, '', '')

    def executed_lines(self):
        lines = []
        for entry in self.executed:
            line = entry['command_line']
            lines.append(shlex.split(line)[-1] if line.startswith('sudo ') else line)
        return lines


def create_remote_command_executor(config):
    executor_type = config['REMOTE_COMMAND_EXECUTOR']
    if executor_type == 'ssh':
        return SSHCommandExecutor(
            user=config['HOST_SSH_USER'],
            port=config['HOST_SSH_PORT'],
            timeout=config['HOST_SSH_TIMEOUT'],
        )
    if executor_type == 'dummy':
        return DummyCommandExecutor()
    raise RuntimeError('unknown REMOTE_COMMAND_EXECUTOR "%s"' % executor_type)


def get_remote_command_executor():
    """Return the executor of the current application, creating it on first use"""
    executor = current_app.extensions.get(EXTENSION_KEY)
    if executor is None:
        executor = create_remote_command_executor(current_app.config)
        current_app.extensions[EXTENSION_KEY] = executor
    return executor


class RemoteFileSystem:
    """File system helpers for one managed host"""

    def __init__(self, executor, host_id, sudo=True):
        self.executor = executor
        self.host_id = host_id
        self.sudo = sudo

    def _run(self, command, **kwargs):
        return self.executor.execute(self.host_id, command, sudo=self.sudo, **kwargs)

    def create_directory(self, path, mode=None):
        self._run(['mkdir', '-p', path])
        if mode is not None:
            self.change_mode(path, mode)

    def change_mode(self, path, mode):
        self._run(['chmod', '%o' % mode, path])

    def list_directory(self, path):
        out = self._run(['ls', '-1', '-A', path]).stdout
        return [line for line in out.splitlines() if line]

    def exists(self, path):
        return self._run(['test', '-e', path], check=False).exit_code == 0

    def remove_file(self, path):
        self._run(['rm', '-f', path])

    def remove_directory_recursive(self, path):
        self._run(['rm', '-rf', path])

    def read_text_file(self, path):
        return self._run(['cat', path]).stdout

    def write_file(self, path, content, mode=None):
        if mode is not None:
            # create the file with the final mode before any content lands in it
            self._run(['install', '-m', '%o' % mode, '/dev/null', path])
        self._run(RedirectStdout(['cat'], path), stdin=content)

    def query_file_system_type(self, path):
        """File system type of the mount holding path, as reported by df -T"""
        out = self._run(['df', '-T', path]).stdout
        return parse_df_file_system_type(out)


def parse_df_file_system_type(df_output):
    lines = [line for line in df_output.splitlines() if line.strip()]
    if len(lines) < 2:
        raise ValueError('unexpected df output: "%s"' % df_output)
    return lines[-1].split()[1]
