# backend/utils/hashing.py
from passlib.context import CryptContext

# Passwords and password-reset codes are both stored as bcrypt hashes
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)
