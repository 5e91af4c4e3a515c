"""
Snapshots of file and object storages.

The data of a storage lives in the btrfs subvolume ``<resource dir>/data``,
read-only snapshots of it in ``<resource dir>/snapshots/<ISO-8601 timestamp>``.
"""
import os

from opc.managers.remote import RemoteFileSystem
from opc.utils import iso_timestamp, parse_iso_timestamp


def get_data_path(ref):
    return os.path.join(ref.storage_path, 'data')


def get_snapshots_path(ref):
    return os.path.join(ref.storage_path, 'snapshots')


def create_snapshot(executor, ref):
    snapshots_path = get_snapshots_path(ref)
    RemoteFileSystem(executor, ref.host_id).create_directory(snapshots_path)
    snapshot_path = os.path.join(snapshots_path, iso_timestamp())
    executor.execute(
        ref.host_id,
        ['btrfs', 'subvolume', 'snapshot', '-r', get_data_path(ref), snapshot_path],
        sudo=True
    )
    return snapshot_path


def query_snapshots_ordered(executor, ref):
    """List (name, creation timestamp) of the snapshots of a storage, oldest first"""
    fs = RemoteFileSystem(executor, ref.host_id)
    snapshots_path = get_snapshots_path(ref)
    if not fs.exists(snapshots_path):
        return []
    snapshots = []
    for name in fs.list_directory(snapshots_path):
        try:
            snapshots.append((name, parse_iso_timestamp(name)))
        except ValueError:
            continue
    return sorted(snapshots, key=lambda x: x[1])
