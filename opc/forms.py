""" Forms are made with WTForms. The resource provider endpoints take free-form JSON documents
and validate them in the managers instead.
"""
from flask_wtf import FlaskForm
from wtforms import StringField
from wtforms.validators import DataRequired, Length, Regexp
from wtforms_alchemy import model_form_factory

from opc.models import MAX_HOST_NAME_LENGTH, MAX_PASSWORD_LENGTH, MAX_PATH_LENGTH, MAX_NAME_LENGTH
from opc.models import db
from opc.utils import SAFE_NAME_PATTERN

BaseModelForm = model_form_factory(FlaskForm)


class ModelForm(BaseModelForm):
    @classmethod
    def get_session(cls):
        return db.session


class SessionCreateForm(ModelForm):
    ext_id = StringField('ext_id', validators=[DataRequired()])
    password = StringField('password', validators=[DataRequired()])


class HostForm(ModelForm):
    host_name = StringField('host_name', validators=[DataRequired(), Length(max=MAX_HOST_NAME_LENGTH)])
    password = StringField('password', validators=[DataRequired(), Length(max=MAX_PASSWORD_LENGTH)])


class HostStorageForm(ModelForm):
    path = StringField(
        'path',
        validators=[
            DataRequired(),
            Length(max=MAX_PATH_LENGTH),
            Regexp(r'^/', message='path must be absolute'),
        ]
    )
    file_system_type = StringField('file_system_type', default=None)


class ResourceGroupForm(ModelForm):
    name = StringField(
        'name',
        validators=[DataRequired(), Length(max=MAX_NAME_LENGTH), Regexp(SAFE_NAME_PATTERN, message='invalid name')]
    )


class ResourceForm(ModelForm):
    name = StringField(
        'name',
        validators=[DataRequired(), Length(max=MAX_NAME_LENGTH), Regexp(SAFE_NAME_PATTERN, message='invalid name')]
    )
    provider_name = StringField('provider_name', validators=[DataRequired()])
    resource_type = StringField('resource_type', validators=[DataRequired()])
    storage_id = StringField('storage_id', validators=[DataRequired()])


class LockForm(ModelForm):
    owner = StringField('owner')
