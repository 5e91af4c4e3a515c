import pytest

from opc.managers.remote import (
    render_command, build_command_line, Pipe, RedirectStdout, RemoteCommandError, RemoteFileSystem,
    DummyCommandExecutor, parse_df_file_system_type, read_channel_output
)
from tests.conftest import PrimaryData


def test_render_command_quotes_arguments():
    assert render_command(['mkdir', '-p', '/srv/opc/x']) == 'mkdir -p /srv/opc/x'
    assert render_command(['echo', 'two words', "it's"]) == "echo 'two words' 'it'\"'\"'s'"


def test_render_nested_command():
    command = RedirectStdout(Pipe(Pipe(['tar', '-cf', '-', '.'], ['gzip']), ['cat']), '/backup/a b.tar.gz')
    assert render_command(command) == "tar -cf - . | gzip | cat > '/backup/a b.tar.gz'"


def test_render_invalid_command():
    with pytest.raises(ValueError):
        render_command([])
    with pytest.raises(ValueError):
        render_command('ls -l')


def test_build_command_line():
    assert build_command_line(['ls'], working_dir='/srv') == 'cd /srv && ls'
    assert build_command_line(['ls', '/root'], sudo=True) == "sudo -k -S -p '' sh -c 'ls /root'"


def test_execute_feeds_sudo_password(pri_data: PrimaryData):
    executor = DummyCommandExecutor()
    executor.execute(pri_data.known_host_id, ['cat'], sudo=True, stdin='content')
    entry = executor.executed[0]
    assert entry['host_name'] == pri_data.known_host_name
    assert entry['stdin'] == b'host1-password\ncontent'
    assert executor.executed_lines() == ['cat']


def test_execute_without_sudo(pri_data: PrimaryData):
    executor = DummyCommandExecutor()
    executor.execute(pri_data.known_host_id, ['uptime'])
    assert executor.executed[0]['stdin'] == b''
    assert executor.executed[0]['command_line'] == 'uptime'


def test_execute_checks_exit_code(pri_data: PrimaryData):
    executor = DummyCommandExecutor()
    executor.add_response('false', exit_code=1, stderr='failed')
    with pytest.raises(RemoteCommandError) as e:
        executor.execute(pri_data.known_host_id, ['false'])
    assert e.value.exit_code == 1
    assert e.value.stderr == 'failed'

    res = executor.execute(pri_data.known_host_id, ['false'], check=False)
    assert res.exit_code == 1


def test_execute_unknown_host(pri_data: PrimaryData):
    with pytest.raises(ValueError):
        DummyCommandExecutor().execute('no-such-host', ['ls'])


def test_dummy_executor_later_responses_win(pri_data: PrimaryData):
    executor = DummyCommandExecutor()
    executor.add_response('ls', stdout='a\n')
    executor.add_response('ls /srv', stdout='b\n')
    assert executor.execute_for_stdout(pri_data.known_host_id, ['ls', '/srv']) == 'b\n'
    assert executor.execute_for_stdout(pri_data.known_host_id, ['ls', '/tmp']) == 'a\n'


def test_remote_file_system(pri_data: PrimaryData):
    executor = DummyCommandExecutor()
    executor.add_response('ls -1 -A /srv/opc', stdout='a\n\nb\n')
    executor.add_response('test -e /missing', exit_code=1)
    fs = RemoteFileSystem(executor, pri_data.known_host_id)

    assert fs.list_directory('/srv/opc') == ['a', 'b']
    assert fs.exists('/srv/opc')
    assert not fs.exists('/missing')

    fs.create_directory('/srv/opc/x', mode=0o700)
    fs.write_file('/srv/opc/x/secret', 'value', mode=0o600)
    assert executor.executed_lines()[-4:] == [
        'mkdir -p /srv/opc/x',
        'chmod 700 /srv/opc/x',
        'install -m 600 /dev/null /srv/opc/x/secret',
        'cat > /srv/opc/x/secret',
    ]
    assert executor.executed[-1]['stdin'] == b'host1-password\nvalue'


def test_parse_df_file_system_type():
    out = """Filesystem     Type  1K-blocks    Used Available Use% Mounted on
/dev/sdb1      btrfs 976762584 1234567 975528017   1% /srv/opc
"""
    assert parse_df_file_system_type(out) == 'btrfs'
    with pytest.raises(ValueError):
        parse_df_file_system_type('')


class FakeChannel:
    """Hands out queued output chunks, closes once every chunk has been handed out"""

    def __init__(self, out_chunks, err_chunks):
        self.out_chunks = list(out_chunks)
        self.err_chunks = list(err_chunks)

    @property
    def closed(self):
        return not self.out_chunks and not self.err_chunks

    def recv_ready(self):
        return bool(self.out_chunks)

    def recv_stderr_ready(self):
        return bool(self.err_chunks)

    def recv(self, size):
        return self.out_chunks.pop(0)

    def recv_stderr(self, size):
        return self.err_chunks.pop(0)


def test_read_channel_output_drains_both_streams():
    channel = FakeChannel([b'line 1\n', b'line 2\n'], [b'warning\n'] * 1000)
    out, err = read_channel_output(channel, poll_interval=0)
    assert out == 'line 1\nline 2\n'
    assert err == 'warning\n' * 1000

    assert read_channel_output(FakeChannel([], []), poll_interval=0) == ('', '')
