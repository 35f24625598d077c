import uuid

import bcrypt

from src.extensions import db

ROLES = ('buyer', 'artisan', 'admin')


class User(db.Model):
    __tablename__ = 'users'

    user_id = db.Column(db.Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = db.Column(db.String(255), unique=True, nullable=False)
    name = db.Column(db.String(200), nullable=False, default='')
    password_hash = db.Column(db.Text, nullable=False)
    role = db.Column(db.Enum(*ROLES, name='user_role'), nullable=False, default='buyer')
    created_at = db.Column(db.DateTime, server_default=db.func.now())

    def set_password(self, password):
        self.password_hash = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')

    def check_password(self, password):
        return bcrypt.checkpw(password.encode('utf-8'), self.password_hash.encode('utf-8'))

    def to_dict(self):
        return {
            'user_id': str(self.user_id),
            'email': self.email,
            'name': self.name,
            'role': self.role,
        }
