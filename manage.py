#!/usr/bin/env python
import getpass
import os
import sys

import click
from flask.cli import FlaskGroup
from sqlalchemy import select

import opc.views.commons
from opc.app import create_app
from opc.config import RuntimeConfig
from opc.managers.hosts import add_host, request_host
from opc.models import db, User

# ensure UNITTEST environment before importing app
if {'test', 'coverage'}.intersection(set(sys.argv)):
    os.environ['UNITTEST'] = '1'
# set FLASK_APP to point to our app
os.environ['FLASK_APP'] = 'opc.app:create_app()'

app = create_app()
cli = FlaskGroup()


@cli.command('configvars')
def configvars():
    """ Displays the currently used config vars in the system """
    config_vars = vars(RuntimeConfig)
    dynamic_config = RuntimeConfig()
    for var in config_vars:
        if not var.startswith('__') and var.isupper():
            print("%s : %s" % (var, dynamic_config[var]))


@cli.command('test')
def test():
    """Runs the unit tests without coverage."""
    import pytest
    exit(pytest.main('tests'.split()))


@cli.command('createuser')
@click.option('-e', 'ext_id', help='ext_id')
@click.option('-p', 'password', help='password')
@click.option('-a', 'admin', default=False, help='admin user (default False)')
def createuser(ext_id=None, password=None, admin=False):
    """Creates new user"""
    if not ext_id:
        ext_id = input("user id: ")
    if not password:
        password = getpass.getpass("password: ")

    return opc.views.commons.create_user(ext_id=ext_id, password=password, is_admin=admin)


@cli.command('create_database')
def create_database():
    """Creates database"""
    db.create_all()


@cli.command('initialize_system')
@click.option('-e', 'ext_id')
@click.option('-p', 'password')
def initialize_system(ext_id=None, password=None):
    """Initializes the system using provided admin credentials"""
    db.create_all()
    opc.views.commons.create_user(ext_id=ext_id, password=password, is_admin=True)
    opc.views.commons.create_worker()


@cli.command('update_password')
@click.option('--ext-id', required=True, help='ext_id of the user')
@click.option('--password', required=False, help='new password')
def update_password(ext_id, password=None):
    """Update password for an existing user."""
    stmt = select(User).where(User.ext_id == ext_id)
    user = db.session.execute(stmt).scalar_one_or_none()

    if not user:
        print(f"User '{ext_id}' does not exist")
        sys.exit(1)

    if not password:
        password = getpass.getpass("Password: ")
        password_repeat = getpass.getpass("Repeat password for confirmation: ")
        if password != password_repeat:
            print("Passwords do not match.")
            sys.exit(1)

    user.set_password(password)
    db.session.commit()
    print(f"Password updated for user '{ext_id}'")


@cli.command('addhost')
@click.argument('host_name')
@click.option('-p', 'password', help='password of the host user')
def addhost(host_name, password=None):
    """Registers a managed host"""
    if request_host(host_name):
        print(f"Host '{host_name}' already exists")
        sys.exit(1)
    if not password:
        password = getpass.getpass("Host password: ")
    add_host(host_name, password)


@cli.command('createworker')
def createworker():
    """Creates an admin account for worker"""
    opc.views.commons.create_worker()


@cli.command('reset_worker_password')
def reset_worker_password():
    """Resets worker password to application secret key"""
    worker = User.query.filter_by(ext_id=opc.views.commons.WORKER_EXT_ID).first()
    worker.set_password(app.config['SECRET_KEY'])
    db.session.add(worker)
    db.session.commit()


if __name__ == '__main__':
    cli()
