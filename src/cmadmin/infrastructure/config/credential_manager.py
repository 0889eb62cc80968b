"""
Credential manager for provider and gateway accounts.

Credentials are stored as JSON under `<config_dir>/credentials/`. When a
master password is available they are Fernet-encrypted with a PBKDF2
derived key; the plain legacy format is still readable.
"""

import base64
import hashlib
import json
import logging
import secrets
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import SecretStr

from cmadmin.domain.models import Credential
from .repository import ConfigRepository

logger = logging.getLogger(__name__)


class CredentialManager:
    """
    Manager for secure credential operations.

    Uses PBKDF2 key derivation and Fernet symmetric encryption.
    """

    SALT_LENGTH = 32
    ITERATIONS = 100000
    KEY_LENGTH = 32

    def __init__(self, repository: ConfigRepository, master_password: Optional[str] = None):
        """
        Initialize the credential manager.

        Args:
            repository: Config repository for file operations
            master_password: Master password for encryption (plain storage when absent)
        """
        self.repository = repository
        self.master_password = master_password
        self._encryption_key: Optional[bytes] = None
        self._salt: Optional[bytes] = None

    @property
    def _salt_file(self):
        return self.repository.config_dir / "credentials" / ".salt"

    def _derive_key(self, password: str, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=self.KEY_LENGTH,
            salt=salt,
            iterations=self.ITERATIONS,
        )
        return base64.urlsafe_b64encode(kdf.derive(password.encode()))

    def _get_or_create_salt(self) -> bytes:
        """Load the salt file, creating it on first use."""
        if self._salt is not None:
            return self._salt

        if self._salt_file.exists():
            self._salt = self._salt_file.read_bytes()
            return self._salt

        self._salt = secrets.token_bytes(self.SALT_LENGTH)
        self._salt_file.parent.mkdir(parents=True, exist_ok=True)
        self._salt_file.write_bytes(self._salt)
        logger.info("Created new salt file")
        return self._salt

    def _get_encryption_key(self) -> bytes:
        """
        Raises:
            ValueError: If master password is not available
        """
        if self._encryption_key is not None:
            return self._encryption_key
        if not self.master_password:
            raise ValueError("Master password required for credential encryption")
        self._encryption_key = self._derive_key(self.master_password, self._get_or_create_salt())
        return self._encryption_key

    def encrypt_credential(self, credential: Credential) -> Dict[str, Any]:
        """Encrypt a credential into its storage form."""
        fernet = Fernet(self._get_encryption_key())
        payload = json.dumps({
            "username": credential.username,
            "password": credential.get_password(),
        }).encode()
        return {
            "encrypted": True,
            "data": base64.b64encode(fernet.encrypt(payload)).decode(),
            "salt_hash": hashlib.sha256(self._get_or_create_salt()).hexdigest(),
        }

    def decrypt_credential(self, stored: Dict[str, Any]) -> Credential:
        """
        Turn a stored credential back into a Credential.

        Raises:
            ValueError: If decryption fails or data is invalid
        """
        if not stored.get("encrypted", False):
            return Credential(username=stored["username"], password=SecretStr(stored["password"]))

        fernet = Fernet(self._get_encryption_key())
        if "salt_hash" in stored:
            expected_hash = hashlib.sha256(self._get_or_create_salt()).hexdigest()
            if stored["salt_hash"] != expected_hash:
                raise ValueError("Salt hash mismatch - credential may be corrupted")
        try:
            decrypted = fernet.decrypt(base64.b64decode(stored["data"]))
        except InvalidToken as e:
            raise ValueError("Credential decryption failed: wrong master password?") from e
        data = json.loads(decrypted.decode())
        return Credential(username=data["username"], password=SecretStr(data["password"]))

    def save_credential(self, cred_ref: str, credential: Credential) -> None:
        """Store a credential, encrypted when a master password is set."""
        if self.master_password:
            data = self.encrypt_credential(credential)
        else:
            logger.warning("No master password: storing credential '%s' unencrypted", cred_ref)
            data = {"username": credential.username, "password": credential.get_password()}
        self.repository.save_json_file(f"credentials/{cred_ref}", data)
        logger.info("Saved credential: %s", cred_ref)

    def load_credential(self, cred_ref: str) -> Credential:
        """
        Load a stored credential.

        Raises:
            ValueError: If loading or decryption fails
        """
        try:
            stored = self.repository.load_json_file(f"credentials/{cred_ref}", allow_jsonc=False)
            credential = self.decrypt_credential(stored)
        except (FileNotFoundError, KeyError, ValueError) as e:
            logger.error("Failed to load credential '%s': %s", cred_ref, e)
            raise ValueError(f"Failed to load credential '{cred_ref}': {e}") from e
        logger.debug("Loaded credential: %s", cred_ref)
        return credential
