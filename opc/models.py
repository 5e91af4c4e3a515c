import datetime
import json
import logging
import time
import uuid

from flask_bcrypt import Bcrypt
from flask_sqlalchemy import SQLAlchemy
from jose import jwt, JWTError, ExpiredSignatureError
from jose.exceptions import JWTClaimsError, JWSError
from sqlalchemy import func
from sqlalchemy.ext.hybrid import hybrid_property, Comparator
from sqlalchemy.schema import MetaData

MAX_EXT_ID_LENGTH = 128
MAX_PASSWORD_LENGTH = 100
MAX_HOST_NAME_LENGTH = 255
MAX_PATH_LENGTH = 1024
MAX_NAME_LENGTH = 128

JWS_SIGNING_ALG = 'HS512'

db = SQLAlchemy()

convention = {
    "ix": 'ix_%(column_0_label)s',
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}

db.Model.metadata = MetaData(naming_convention=convention)

bcrypt = Bcrypt()


class CaseInsensitiveComparator(Comparator):
    def __eq__(self, other):
        return func.lower(self.__clause_element__()) == func.lower(other)


def load_column(column):
    try:
        value = json.loads(column)
    except (TypeError, ValueError):
        value = {}
    return value


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.String(32), primary_key=True)
    _ext_id = db.Column('ext_id', db.String(MAX_EXT_ID_LENGTH), unique=True)
    password = db.Column(db.String(MAX_PASSWORD_LENGTH))
    _joining_ts = db.Column('joining_ts', db.DateTime)
    _last_login_ts = db.Column('last_login_ts', db.DateTime)
    is_admin = db.Column(db.Boolean, default=False)
    is_active = db.Column(db.Boolean, default=False)

    def __init__(self, ext_id, password=None, is_admin=False):
        self.id = uuid.uuid4().hex
        self.ext_id = ext_id
        self.is_admin = is_admin
        self.joining_ts = time.time()
        if password:
            self.set_password(password)
            self.is_active = True
        else:
            self.set_password(uuid.uuid4().hex)

    @hybrid_property
    def ext_id(self):
        return self._ext_id.lower()

    @ext_id.setter
    def ext_id(self, value):
        self._ext_id = value.lower()

    @ext_id.comparator
    def ext_id(cls):
        return CaseInsensitiveComparator(cls._ext_id)

    @hybrid_property
    def joining_ts(self):
        return self._joining_ts.timestamp()

    @joining_ts.setter
    def joining_ts(self, value):
        self._joining_ts = datetime.datetime.fromtimestamp(value)

    @hybrid_property
    def last_login_ts(self):
        return self._last_login_ts.timestamp() if self._last_login_ts else None

    @last_login_ts.setter
    def last_login_ts(self, value):
        self._last_login_ts = datetime.datetime.fromtimestamp(value)

    def set_password(self, password):
        self.password = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        if self.is_active:
            return bcrypt.check_password_hash(self.password, password)

    def generate_auth_token(self, app_secret, expires_in=43200):
        ts = int(time.time())
        token = jwt.encode(
            claims=dict(
                id=self.id,
                iat=ts,
                exp=ts + expires_in,
            ),
            key=app_secret,
            algorithm=JWS_SIGNING_ALG
        )
        return token

    @staticmethod
    def verify_auth_token(token, app_secret):
        try:
            # pin the signing algorithm so that it cannot be swapped in the token header
            data = jwt.decode(token, app_secret, algorithms=[JWS_SIGNING_ALG])
        except ExpiredSignatureError:
            logging.info('Token has expired "%s"', token)
            return None
        except (JWTError, JWSError, JWTClaimsError) as e:
            logging.warning('Possible hacking attempt "%s" with token "%s"', e, token)
            return None

        user = db.session.get(User, data['id'])
        if user and user.is_active:
            return user

    def __repr__(self):
        return self.ext_id


class Host(db.Model):
    __tablename__ = 'hosts'

    id = db.Column(db.String(32), primary_key=True)
    host_name = db.Column(db.String(MAX_HOST_NAME_LENGTH), unique=True, nullable=False)
    password = db.Column(db.String(MAX_PASSWORD_LENGTH))
    storages = db.relationship('HostStorage', backref='host', lazy='dynamic', cascade='all, delete-orphan')

    def __init__(self, host_name, password):
        self.id = uuid.uuid4().hex
        self.host_name = host_name
        self.password = password

    def __repr__(self):
        return self.host_name


class HostStorage(db.Model):
    __tablename__ = 'host_storages'
    __table_args__ = (db.UniqueConstraint('host_id', 'path'),)

    id = db.Column(db.String(32), primary_key=True)
    host_id = db.Column(db.String(32), db.ForeignKey('hosts.id'), nullable=False)
    path = db.Column(db.String(MAX_PATH_LENGTH), nullable=False)
    file_system_type = db.Column(db.String(32))
    resources = db.relationship('Resource', backref='storage', lazy='dynamic')

    def __init__(self, host_id, path, file_system_type):
        self.id = uuid.uuid4().hex
        self.host_id = host_id
        self.path = path
        self.file_system_type = file_system_type


class ResourceGroup(db.Model):
    __tablename__ = 'resource_groups'

    id = db.Column(db.String(32), primary_key=True)
    name = db.Column(db.String(MAX_NAME_LENGTH), unique=True, nullable=False)
    resources = db.relationship('Resource', backref='resource_group', lazy='dynamic')

    def __init__(self, name):
        self.id = uuid.uuid4().hex
        self.name = name


class Resource(db.Model):
    __tablename__ = 'resources'
    __table_args__ = (
        db.UniqueConstraint('resource_group_id', 'resource_provider_name', 'resource_type', 'name'),
    )

    id = db.Column(db.String(32), primary_key=True)
    resource_group_id = db.Column(db.String(32), db.ForeignKey('resource_groups.id'), nullable=False)
    storage_id = db.Column(db.String(32), db.ForeignKey('host_storages.id'), nullable=False)
    resource_provider_name = db.Column(db.String(64), nullable=False)
    resource_type = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(MAX_NAME_LENGTH), nullable=False)

    def __init__(self, resource_group_id, storage_id, resource_provider_name, resource_type, name):
        self.id = uuid.uuid4().hex
        self.resource_group_id = resource_group_id
        self.storage_id = storage_id
        self.resource_provider_name = resource_provider_name
        self.resource_type = resource_type
        self.name = name

    @property
    def external_id(self):
        return '/%s/%s/%s/%s' % (
            self.resource_group.name, self.resource_provider_name, self.resource_type, self.name)

    @property
    def host_name(self):
        return self.storage.host.host_name


class ResourceConfig(db.Model):
    __tablename__ = 'resource_configs'

    resource_id = db.Column(db.String(32), db.ForeignKey('resources.id'), primary_key=True)
    _config = db.Column('config', db.Text)

    def __init__(self, resource_id, config):
        self.resource_id = resource_id
        self.config = config

    @hybrid_property
    def config(self):
        return load_column(self._config)

    @config.setter
    def config(self, value):
        self._config = json.dumps(value)


class ResourceLog(db.Model):
    STATUS_RUNNING = 0
    STATUS_FINISHED = 1
    STATUS_FAILED = 2

    __tablename__ = 'resource_logs'

    id = db.Column(db.String(32), primary_key=True)
    resource_id = db.Column(db.String(32), db.ForeignKey('resources.id'), index=True)
    title = db.Column(db.String(255))
    status = db.Column(db.Integer)
    log = db.Column(db.Text)
    _start_ts = db.Column('start_ts', db.DateTime)
    _end_ts = db.Column('end_ts', db.DateTime, default=datetime.datetime.utcnow)

    def __init__(self, resource_id, title, status, log, start_ts, end_ts=None):
        self.id = uuid.uuid4().hex
        self.resource_id = resource_id
        self.title = title
        self.status = status
        self.log = log
        self.start_ts = start_ts
        self.end_ts = end_ts if end_ts else time.time()

    @hybrid_property
    def start_ts(self):
        return self._start_ts.timestamp()

    @start_ts.setter
    def start_ts(self, value):
        self._start_ts = datetime.datetime.fromtimestamp(value)

    @hybrid_property
    def end_ts(self):
        return self._end_ts.timestamp()

    @end_ts.setter
    def end_ts(self, value):
        self._end_ts = datetime.datetime.fromtimestamp(value)


class Lock(db.Model):
    __tablename__ = 'locks'

    id = db.Column(db.String(64), primary_key=True)
    owner = db.Column(db.String(64))
    acquired_at = db.Column(db.DateTime)

    def __init__(self, id, owner):
        self.id = id
        self.owner = owner
        self.acquired_at = datetime.datetime.utcnow()
