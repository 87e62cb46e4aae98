import os
from sqlalchemy import select
from ylportal.core.config import get_settings
from ylportal.db.session import make_engine, make_session_factory
from ylportal.models.user import User
from ylportal.core.security import hash_password

def main():
    email = os.environ.get("SEED_ADMIN_EMAIL", "admin@example.org").strip().lower()
    name = os.environ.get("SEED_ADMIN_NAME", "Administrator")
    password = os.environ.get("SEED_ADMIN_PASS", "admin12345")

    engine = make_engine(get_settings().database_url)
    db = make_session_factory(engine)()
    try:
        existing = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if existing:
            return
        db.add(User(email=email, name=name, password_hash=hash_password(password), is_admin=True))
        db.commit()
    finally:
        db.close()
        engine.dispose()

if __name__ == "__main__":
    main()
