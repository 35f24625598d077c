from flask_jwt_extended import JWTManager
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
jwt = JWTManager()

# Revoked token ids (jti). Process-local; use Redis with TTL when running more than one worker.
BLOCKLIST = set()
