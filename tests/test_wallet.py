"""
Tests for relayer keypair loading.
"""
import json
import os

import pytest
from solders.keypair import Keypair

from sealedswap.chain.wallet import keypair_from_secret, load_keypair
from sealedswap.exceptions import ConfigurationError


@pytest.fixture
def keypair():
    return Keypair.from_seed(bytes([3] * 32))


def test_json_array(keypair):
    raw = json.dumps(list(bytes(keypair)))
    assert keypair_from_secret(raw).pubkey() == keypair.pubkey()


def test_base58(keypair):
    assert keypair_from_secret(str(keypair) + "\n").pubkey() == keypair.pubkey()


@pytest.mark.parametrize("raw", ["[1, 2, 3]", "[not json", "{}", "definitely-not-base58-0OIl"])
def test_malformed_secrets(raw):
    with pytest.raises(ConfigurationError):
        keypair_from_secret(raw)


def test_load_keypair_from_file(tmp_path, keypair):
    path = tmp_path / "id.json"
    path.write_text(json.dumps(list(bytes(keypair))))
    os.chmod(path, 0o600)
    assert load_keypair(str(path)).pubkey() == keypair.pubkey()


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError) as exc_info:
        load_keypair(str(tmp_path / "absent.json"))
    assert "not found" in exc_info.value.message
