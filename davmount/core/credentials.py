# core/credentials.py
"""Encrypted storage for WebDAV server credentials."""

import json
import logging
import os
import shutil
import time
from threading import Lock
from typing import Dict, List, Optional

from cryptography.fernet import Fernet, InvalidToken

from davmount.core.errors import CorruptCredentialError
from davmount.core.models import ServerCredentials
from davmount.utils.helpers import atomic_write

logger = logging.getLogger(__name__)


class CredentialStore:
    """
    Maps opaque credential ids to username/password pairs, encrypted at rest.

    Every record is a separate Fernet token, so one damaged record does not
    take the others down with it. The Fernet key is kept in its own file next
    to the records.
    """

    def __init__(self, config_dir: str):
        """
        Initialize credential store.

        Args:
            config_dir: Directory holding the key file and the records
        """
        self.config_dir = config_dir
        self.store_file = os.path.join(config_dir, 'credentials.json')
        self.key_file = os.path.join(config_dir, '.credentials.key')
        self._lock = Lock()

        os.makedirs(config_dir, exist_ok=True)

        self._cipher = Fernet(self._load_key())
        logger.debug(f"CredentialStore initialized with config dir: {config_dir}")

    # Key handling

    def _generate_key(self) -> bytes:
        """Generate and persist a new Fernet key."""
        key = Fernet.generate_key()
        atomic_write(self.key_file, key, mode=0o600)
        logger.info("Generated new credential encryption key")
        return key

    def _load_key(self) -> bytes:
        """Load the Fernet key, replacing an unusable key file."""
        if not os.path.exists(self.key_file):
            return self._generate_key()

        with open(self.key_file, 'rb') as f:
            key = f.read().strip()

        try:
            Fernet(key)
        except ValueError:
            # Records encrypted with the old key will now report as corrupt
            logger.error("Credential key file is invalid, generating new key")
            self._backup(self.key_file)
            return self._generate_key()

        logger.debug("Loaded credential key from file")
        return key

    # Record file handling

    def _read_tokens(self) -> Dict[str, str]:
        """Read the id -> token map. Raises CorruptCredentialError."""
        if not os.path.exists(self.store_file):
            return {}

        try:
            with open(self.store_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise CorruptCredentialError(
                "Credential store is unreadable",
                details={'file': self.store_file}, cause=e)

        if not isinstance(data, dict) or not all(
                isinstance(v, str) for v in data.values()):
            raise CorruptCredentialError(
                "Credential store has an unexpected layout",
                details={'file': self.store_file})
        return data

    def _read_tokens_for_write(self) -> Dict[str, str]:
        """Read tokens, starting over if the file itself is damaged."""
        try:
            return self._read_tokens()
        except CorruptCredentialError as e:
            logger.warning(f"{e.message}, resetting credential store")
            self._backup(self.store_file)
            return {}

    def _write_tokens(self, tokens: Dict[str, str]):
        data = json.dumps(tokens, indent=2).encode('utf-8')
        atomic_write(self.store_file, data, mode=0o600)

    def _backup(self, path: str):
        try:
            backup_file = f"{path}.corrupted.{int(time.time())}"
            shutil.copy2(path, backup_file)
            logger.info(f"Corrupted file backed up to {backup_file}")
        except OSError as e:
            logger.error(f"Error backing up corrupted file: {e}")

    # Public API

    def put(self, credential_id: str, credentials: ServerCredentials):
        """
        Store credentials under credential_id, overwriting any previous value.

        Args:
            credential_id: Opaque id referenced by a virtual folder
            credentials: Username/password pair
        """
        if not credential_id:
            raise ValueError("credential_id must not be empty")

        plaintext = json.dumps(credentials.to_dict()).encode('utf-8')
        token = self._cipher.encrypt(plaintext).decode('ascii')

        with self._lock:
            tokens = self._read_tokens_for_write()
            tokens[credential_id] = token
            self._write_tokens(tokens)

        logger.debug(f"Credentials stored for id {credential_id}")

    def get(self, credential_id: str) -> Optional[ServerCredentials]:
        """
        Get credentials by id.

        Returns:
            The stored credentials, or None if never set

        Raises:
            CorruptCredentialError: the record exists but cannot be read
        """
        with self._lock:
            token = self._read_tokens().get(credential_id)

        if token is None:
            return None

        try:
            plaintext = self._cipher.decrypt(token.encode('ascii'))
            return ServerCredentials.from_dict(json.loads(plaintext.decode('utf-8')))
        except (InvalidToken, UnicodeError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Credential record {credential_id} is corrupt")
            raise CorruptCredentialError(
                f"Credentials for id {credential_id} cannot be decrypted",
                details={'credential_id': credential_id}, cause=e)

    def has(self, credential_id: str) -> bool:
        """Check whether a record exists (readable or not)."""
        with self._lock:
            return credential_id in self._read_tokens()

    def delete(self, credential_id: str):
        """Delete credentials by id. Deleting an unknown id is a no-op."""
        with self._lock:
            tokens = self._read_tokens_for_write()
            if tokens.pop(credential_id, None) is None:
                logger.debug(f"No credentials to delete for id {credential_id}")
                return
            self._write_tokens(tokens)

        logger.debug(f"Credentials deleted for id {credential_id}")

    def ids(self) -> List[str]:
        """Ids of all stored records."""
        with self._lock:
            return list(self._read_tokens())

    def delete_all(self) -> int:
        """Delete every stored credential. Returns how many were removed."""
        with self._lock:
            tokens = self._read_tokens_for_write()
            self._write_tokens({})
        logger.info(f"Deleted {len(tokens)} stored credentials")
        return len(tokens)
