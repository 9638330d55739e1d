"""Read-only store of signing keys shared by all asset loops."""

import logging
import os
from types import MappingProxyType
from typing import List, Mapping, Optional

logger = logging.getLogger(__name__)


class SigningKeyStore:
    """
    Maps account identifiers to signing keys.

    The mapping is frozen at construction so concurrent readers need no lock.
    Keys never appear in ``repr`` or in log output.
    """

    def __init__(self, keys: Optional[Mapping[str, str]] = None):
        self._keys = MappingProxyType(dict(keys or {}))

    @classmethod
    def from_env(cls, account_id: str, env_var: str = "WALLET_PRIVATE_KEY") -> "SigningKeyStore":
        """
        Build a store holding one key read from the environment.

        Args:
            account_id: Identifier the key is stored under
            env_var: Environment variable holding the key

        Returns:
            SigningKeyStore (empty when the variable is unset)
        """
        key = os.getenv(env_var)
        if not key:
            logger.info(f"{env_var} not set; signing key store is empty")
            return cls()
        return cls({account_id: key})

    def get(self, account_id: str) -> str:
        """
        Return the signing key for ``account_id``.

        Raises:
            KeyError: If no key is stored for the account
        """
        try:
            return self._keys[account_id]
        except KeyError:
            raise KeyError(f"No signing key for account {account_id}") from None

    def has(self, account_id: str) -> bool:
        return account_id in self._keys

    def account_ids(self) -> List[str]:
        """Account identifiers with a stored key."""
        return sorted(self._keys)

    def __len__(self) -> int:
        return len(self._keys)

    def __repr__(self) -> str:
        return f"SigningKeyStore(accounts={sorted(self._keys)}, keys=[REDACTED])"
