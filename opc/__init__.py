"""
=============================
OpenPrivateCloud overview
=============================

OpenPrivateCloud is a control plane for a self-hosted private cloud. An
operator registers managed hosts and their storages, and deploys resources
such as key vaults, backup vaults and OpenVPN gateways on them. Everything is
done over SSH by running the usual system tools on the hosts (easy-rsa,
openvpn, btrfs, tar, gpg, rsync, mount), so a managed host needs nothing but a
user with sudo rights.

The system consists of

  * **API**: a Flask/Flask-RESTful application with the database of hosts,
    resources and their configuration. It runs the remote commands and the
    backup processes.
  * **worker**: polls the API and starts scheduled backups.
  * **maintenance**: periodic cleanup jobs, run from cron.

Resources are addressed by their external id
``/<resource group>/<resource provider>/<resource type>/<name>``, and
their files live in ``<host storage path>/<resource id>`` on the host.
"""
