import logging
import time

import flask_restful as restful
from flask import current_app
from flask_restful import fields, marshal

from opc.forms import SessionCreateForm
from opc.models import db, User

token_fields = {
    'token': fields.String(default=None),
    'user_id': fields.String,
    'is_admin': fields.Boolean(default=False),
}


class SessionView(restful.Resource):
    def post(self):
        form = SessionCreateForm()
        if not form.validate_on_submit():
            logging.warning('SessionView.post() validation error on user login')
            return form.errors, 422

        user = User.query.filter_by(ext_id=form.ext_id.data).first()
        if user and user.check_password(form.password.data):
            user.last_login_ts = time.time()
            db.session.commit()

            logging.info('SessionView.post() new session for user %s', user.id)

            return marshal({
                'token': user.generate_auth_token(current_app.config['SECRET_KEY']),
                'is_admin': user.is_admin,
                'user_id': user.id,
            }, token_fields)
        logging.warning('SessionView.post() invalid login credentials for %s', form.ext_id.data)
        return 'Invalid user or password', 401
