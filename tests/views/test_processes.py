from opc.managers.process_tracker import get_process_tracker_manager
from tests.conftest import PrimaryData, RequestMaker


def test_list_processes(rmaker: RequestMaker, pri_data: PrimaryData):
    manager = get_process_tracker_manager()
    first = manager.create('Backup of: x', pri_data.known_vault_id)
    first.add('Backing up', 'fs1')
    first.finish()
    second = manager.create('Deployment of: y')

    response = rmaker.make_authenticated_admin_request(path='/api/v1/processes')
    assert response.status_code == 200
    assert [x['id'] for x in response.json] == [first.id, second.id]
    assert response.json[0]['status'] == 1
    assert response.json[0]['resource_id'] == pri_data.known_vault_id
    assert response.json[1]['status'] == 0
    assert response.json[1]['end_ts'] is None
    assert 'text' not in response.json[0]

    response = rmaker.make_authenticated_user_request(path='/api/v1/processes')
    assert response.status_code == 403


def test_get_process(rmaker: RequestMaker, pri_data: PrimaryData):
    tracker = get_process_tracker_manager().create('Backup of: x', pri_data.known_vault_id)
    tracker.add('Backing up', 'fs1')
    tracker.fail(RuntimeError('disk full'))

    response = rmaker.make_authenticated_admin_request(path='/api/v1/processes/%d' % tracker.id)
    assert response.status_code == 200
    assert response.json['status'] == 2
    lines = response.json['text'].split('\n')
    assert lines[0].endswith(': Backing up fs1')
    assert lines[1].endswith(': Error: disk full')

    response = rmaker.make_authenticated_admin_request(path='/api/v1/processes/999')
    assert response.status_code == 404
