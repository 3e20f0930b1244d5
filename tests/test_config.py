"""
Tests for VaultConfig validation and environment loading.
"""
import base64

import pytest
from pydantic import ValidationError

from filevault import ConfigurationError, VaultConfig, encode_key, generate_key, load_key


# --- Test Fixtures ---

@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "FILEVAULT_DISK", "FILEVAULT_KEY", "FILEVAULT_CIPHER", "FILEVAULT_CHUNK_SIZE",
        "FILEVAULT_LOCAL_ROOT", "FILEVAULT_S3_BUCKET", "FILEVAULT_S3_PREFIX",
        "AWS_ENDPOINT_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


# --- Key Encoding ---

class TestKeyEncoding:
    """Tests for base64 key strings."""

    def test_plain_base64(self):
        """Test decoding without prefix."""
        key = generate_key()
        assert load_key(base64.b64encode(key).decode()) == key

    def test_prefixed(self):
        """Test the base64: prefix round trip."""
        key = generate_key("AES-256-CBC")
        encoded = encode_key(key)
        assert encoded.startswith("base64:")
        assert load_key(encoded) == key

    def test_invalid(self):
        """Test garbage is rejected."""
        with pytest.raises(ValueError):
            load_key("not base64!!")


# --- Validation ---

class TestVaultConfig:
    """Tests for VaultConfig validators."""

    def test_defaults(self):
        """Test default disk and cipher."""
        config = VaultConfig()
        assert config.disk == "local"
        assert config.cipher == "AES-128-CBC"
        assert config.key == b""
        assert config.disks["local"].root == "storage"
        assert config.effective_chunk_size == 160000

    def test_cipher_is_normalized(self):
        """Test lower-case cipher names."""
        assert VaultConfig(cipher="aes-256-cbc").cipher == "AES-256-CBC"

    def test_unknown_cipher(self):
        """Test unsupported ciphers fail validation."""
        with pytest.raises(ValidationError):
            VaultConfig(cipher="RC4")

    def test_key_length(self):
        """Test key must match the cipher."""
        with pytest.raises(ValidationError):
            VaultConfig(key=generate_key("AES-128-CBC"), cipher="AES-256-CBC")

    def test_key_from_string(self):
        """Test base64 strings are decoded."""
        key = generate_key()
        assert VaultConfig(key=encode_key(key)).key == key

    def test_unknown_default_disk(self):
        """Test the default disk must be configured."""
        with pytest.raises(ValidationError):
            VaultConfig(disk="s3")

    def test_s3_disk_needs_bucket(self):
        """Test s3 disks without bucket."""
        with pytest.raises(ValidationError):
            VaultConfig(disks={"local": {}, "s3": {"driver": "s3"}})

    def test_chunk_size_alignment(self):
        """Test chunk size must be block aligned."""
        with pytest.raises(ValidationError):
            VaultConfig(chunk_size=1000)
        assert VaultConfig(chunk_size=1024).effective_chunk_size == 1024

    def test_frozen(self):
        """Test configuration cannot be mutated."""
        config = VaultConfig()
        with pytest.raises(ValidationError):
            config.disk = "other"

    def test_replace(self):
        """Test replace returns a new validated config."""
        config = VaultConfig()
        key = generate_key("AES-256-CBC")
        other = config.replace(cipher="AES-256-CBC", key=key)
        assert other.key == key
        assert config.key == b""

    def test_replace_invalid(self):
        """Test replace reports ConfigurationError."""
        with pytest.raises(ConfigurationError):
            VaultConfig().replace(disk="missing")

    def test_repr_hides_key(self):
        """Test key material does not leak into repr."""
        key = generate_key()
        config = VaultConfig(key=key)
        assert repr(key) not in repr(config)
        assert "key_set=True" in repr(config)


# --- Environment ---

class TestFromEnv:
    """Tests for VaultConfig.from_env."""

    def test_minimal(self, clean_env):
        """Test defaults without variables."""
        config = VaultConfig.from_env()
        assert config.disk == "local"
        assert list(config.disks) == ["local"]

    def test_full(self, clean_env, tmp_path):
        """Test all variables together."""
        key = generate_key("AES-256-CBC")
        clean_env.setenv("FILEVAULT_KEY", encode_key(key))
        clean_env.setenv("FILEVAULT_CIPHER", "AES-256-CBC")
        clean_env.setenv("FILEVAULT_DISK", "s3")
        clean_env.setenv("FILEVAULT_LOCAL_ROOT", str(tmp_path))
        clean_env.setenv("FILEVAULT_S3_BUCKET", "my-bucket")
        clean_env.setenv("FILEVAULT_S3_PREFIX", "vault/")
        clean_env.setenv("FILEVAULT_CHUNK_SIZE", "4096")
        config = VaultConfig.from_env()
        assert config.key == key
        assert config.disk == "s3"
        assert config.chunk_size == 4096
        assert config.disks["s3"].bucket == "my-bucket"
        assert config.disks["s3"].prefix == "vault/"
        assert config.disks["local"].root == str(tmp_path)

    def test_bad_key(self, clean_env):
        """Test invalid env values become ConfigurationError without echoing the key."""
        clean_env.setenv("FILEVAULT_KEY", encode_key(b"short"))
        with pytest.raises(ConfigurationError) as excinfo:
            VaultConfig.from_env()
        assert "c2hvcnQ" not in str(excinfo.value)
