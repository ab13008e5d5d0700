"""
Bootstrap an administrator account
Usage: python create_admin.py [--email admin@namanhospital.com] [--name "Admin User"]

Creates the tables if needed, inserts the admin user when absent and prints a
bearer token for it.
"""
import sys
import logging
import argparse
from datetime import timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from app.auth import create_access_token
from app.database import Base, SessionLocal, engine
from app.models import ROLE_ADMIN, User

logging.basicConfig(level=logging.INFO, format='%(message)s')
logger = logging.getLogger(__name__)


def create_admin(email: str, name: str, phone: str) -> User:
    Base.metadata.create_all(bind=engine, checkfirst=True)
    db = SessionLocal()
    try:
        existing = db.query(User).filter(User.email == email).first()
        if existing:
            if existing.role != ROLE_ADMIN:
                logger.error(f"❌ {email} already exists with role {existing.role}")
                sys.exit(1)
            logger.info(f"Admin user already exists: {existing.email}")
            return existing

        admin = User(name=name, email=email, phone=phone, role=ROLE_ADMIN)
        db.add(admin)
        db.commit()
        db.refresh(admin)
        logger.info(f"✅ Admin user created: {admin.email} (id {admin.id})")
        return admin
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description='Create the administrator account')
    parser.add_argument('--email', default='admin@namanhospital.com')
    parser.add_argument('--name', default='Admin User')
    parser.add_argument('--phone', default='+91 6272 245 911')
    parser.add_argument('--token-hours', type=int, default=12, help='Lifetime of the printed token')
    args = parser.parse_args()

    try:
        admin = create_admin(args.email, args.name, args.phone)
    except Exception as e:
        logger.error(f"❌ Error creating admin: {e}")
        sys.exit(1)

    token = create_access_token(admin, timedelta(hours=args.token_hours))
    logger.info("━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━")
    logger.info(f"📧 Email: {admin.email}")
    logger.info(f"🔑 Bearer token: {token}")
    logger.info("━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━")
