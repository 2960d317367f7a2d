from functools import lru_cache

from passlib.context import CryptContext

from KoriBackend.config import get_settings


@lru_cache(maxsize=4)
def _context(rounds: int) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


def hash_password(password: str) -> str:
    return _context(get_settings().bcrypt_rounds).hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not password or not hashed:
        return False
    return _context(get_settings().bcrypt_rounds).verify(password, hashed)
