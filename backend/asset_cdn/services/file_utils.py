"""Hashing and naming helpers.

- Secrets come from `secrets`, so tokens carry at least 256 bits of entropy.
- Stored filenames are a fresh uuid4 plus a normalized extension; nothing
  else from the client's filename ever reaches the filesystem.
"""
import hashlib
import re
import secrets
import uuid
from pathlib import PurePosixPath

SAFE_NAME = re.compile(r"[^a-zA-Z0-9._-]+")
SAFE_EXTENSION = re.compile(r"^\.[a-z0-9]{1,10}$")


def generate_secure_token(length: int = 32) -> str:
    """Random token of `length` bytes, hex encoded (64 chars for the default)."""
    return secrets.token_hex(length)


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def get_file_extension(filename: str) -> str:
    """Lowercased extension with the dot ('.jpg'), or '' when there is none."""
    name = PurePosixPath((filename or "").replace("\\", "/")).name
    if "." not in name.strip("."):
        return ""
    return "." + name.rsplit(".", 1)[1].lower()


def generate_unique_filename(original_filename: str) -> str:
    """uuid4 hex name that keeps the original extension when it looks sane."""
    ext = get_file_extension(original_filename)
    if not SAFE_EXTENSION.match(ext):
        ext = ""
    return f"{uuid.uuid4().hex}{ext}"


def sanitize_filename(name: str) -> str:
    """Strip directories and special chars from a client-supplied filename (max 255 chars)."""
    name = PurePosixPath((name or "").replace("\\", "/")).name.strip()
    name = SAFE_NAME.sub("_", name)
    return name[:255]


def format_file_size(size: int) -> str:
    """Human readable size, e.g. '1.50 MB'."""
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(units) - 1:
        value /= 1024
        unit += 1
    return f"{value:.2f} {units[unit]}"
