"""
Shared fixtures: VAPID key pairs and temporary databases.
"""

import os
import shutil
import tempfile

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from notify_guard.core.vapid import VapidCredential, b64url_encode
from notify_guard.storage.repository import initialize_schema


@pytest.fixture
def ec_key():
    """Fresh P-256 key pair."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def credential(ec_key):
    """VAPID credential encoded the way key generators emit it."""
    private_raw = ec_key.private_numbers().private_value.to_bytes(32, "big")
    public_raw = ec_key.public_key().public_bytes(
        serialization.Encoding.X962,
        serialization.PublicFormat.UncompressedPoint
    )
    return VapidCredential(
        public_key=b64url_encode(public_raw),
        private_key=b64url_encode(private_raw),
        contact="ops@example.com"
    )


@pytest.fixture
def db_path():
    """Path to an initialized SQLite database, removed afterwards."""
    temp_dir = tempfile.mkdtemp()
    path = os.path.join(temp_dir, "test.db")
    initialize_schema(path)
    yield path
    shutil.rmtree(temp_dir, ignore_errors=True)
