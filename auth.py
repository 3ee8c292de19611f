"""
auth.py
Authentication utilities (bcrypt hashing, verify, admin and member login, change password).
"""

from __future__ import annotations

import bcrypt

import db


def _to_bcrypt_secret(password: str) -> bytes:
    """
    bcrypt only uses the first 72 BYTES of the password.
    We truncate to 72 bytes to avoid ValueError and to make behavior explicit.
    """
    pw = password.encode("utf-8")
    if len(pw) > 72:
        pw = pw[:72]
    return pw


def hash_password(password: str, rounds: int = 12) -> str:
    """
    Returns a bcrypt hash as a UTF-8 string (stored in SQLite).
    """
    secret = _to_bcrypt_secret(password)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(secret, salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    secret = _to_bcrypt_secret(password)
    stored = password_hash.encode("utf-8")
    return bcrypt.checkpw(secret, stored)


def get_admin_by_username(username: str):
    return db.fetch_one("SELECT * FROM admin_users WHERE username = ?", (username,))


def login(username: str, password: str) -> bool:
    admin = get_admin_by_username(username)
    if not admin:
        return False
    return verify_password(password, admin["password_hash"])


def change_password(username: str, new_password: str) -> None:
    new_hash = hash_password(new_password)
    db.execute(
        "UPDATE admin_users SET password_hash = ? WHERE username = ?",
        (new_hash, username),
    )
    db.clear_force_password_change()


def member_login(email: str, password: str) -> int | None:
    """Returns the member id on success."""
    row = db.fetch_one(
        "SELECT id, password_hash FROM members WHERE lower(email) = lower(?)",
        (email.strip(),),
    )
    if not row or not row["password_hash"]:
        return None
    if not verify_password(password, row["password_hash"]):
        return None
    return int(row["id"])


def set_member_password(member_id: int, new_password: str) -> None:
    db.execute(
        "UPDATE members SET password_hash = ? WHERE id = ?",
        (hash_password(new_password), member_id),
    )
