"""Loaders for ssh transport credentials and OpenPGP commit-signing keys.

Both loaders are pure: they read and validate key material once and return
immutable values that every later operation shares read-only.
"""

import logging
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

import paramiko
import pgpy
from paramiko.hostkeys import InvalidHostKey
from paramiko.pkey import UnknownKeyType
from pgpy.errors import PGPDecryptionError, PGPError

from .constants import APP_NAME, DEFAULT_SSH_USER
from .errors import CredentialError, SigningKeyError

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class SshCredentials:
    """An ssh identity plus the host keys it trusts.

    Attributes:
        key_path (Path): The private key file.
        known_hosts_path (Path): The known hosts file used to validate servers.
        user (str): The remote user.
        private_key (paramiko.PKey): The parsed private key.
        host_keys (paramiko.HostKeys): The parsed known hosts.
    """

    key_path: Path
    known_hosts_path: Path
    user: str
    private_key: paramiko.PKey = field(repr=False, compare=False)
    host_keys: paramiko.HostKeys = field(repr=False, compare=False)

    def verify_host(self, hostname: str, key: paramiko.PKey) -> bool:
        """Host trust callback: is `key` a known key for `hostname`?"""
        return self.host_keys.check(hostname, key)

    @property
    def ssh_command(self) -> str:
        """The ssh invocation used by git and dulwich transports."""
        return " ".join(
            [
                "ssh",
                "-i",
                shlex.quote(str(self.key_path)),
                "-o",
                "IdentitiesOnly=yes",
                "-o",
                f"UserKnownHostsFile={shlex.quote(str(self.known_hosts_path))}",
                "-o",
                "StrictHostKeyChecking=yes",
                "-o",
                "BatchMode=yes",
                "-l",
                shlex.quote(self.user),
            ]
        )

    def git_env(self) -> dict[str, str]:
        """Environment for a git subprocess authenticating with these credentials."""
        env = os.environ.copy()
        env["GIT_SSH_COMMAND"] = self.ssh_command
        return env


def git_env(credentials: SshCredentials | None) -> dict[str, str] | None:
    """Returns the subprocess environment for optional credentials."""
    return credentials.git_env() if credentials else None


def load_ssh_credentials(
    key_path: str | Path,
    known_hosts_path: str | Path,
    user: str = DEFAULT_SSH_USER,
) -> SshCredentials:
    """Loads an ssh private key and the known hosts used to validate servers.

    Args:
        key_path (str | Path): Path of the (unencrypted) private key.
        known_hosts_path (str | Path): Path of an OpenSSH known_hosts file.
        user (str, optional): Remote user. Defaults to 'git'.

    Returns:
        SshCredentials: The validated credentials.

    Raises:
        CredentialError: If either file is missing, unreadable or unparsable.
    """
    key_path = Path(key_path)
    known_hosts_path = Path(known_hosts_path)

    try:
        key_path.stat()
    except OSError as e:
        raise CredentialError(f"Failed to access ssh key file {key_path}: {e}") from e

    try:
        private_key = paramiko.PKey.from_path(key_path)
    except (paramiko.SSHException, UnknownKeyType, ValueError, OSError) as e:
        raise CredentialError(f"Failed to parse ssh key file {key_path}: {e}") from e

    try:
        known_hosts_path.stat()
    except OSError as e:
        raise CredentialError(
            f"Failed to access known hosts file {known_hosts_path}: {e}"
        ) from e

    try:
        host_keys = paramiko.HostKeys(str(known_hosts_path))
    except (InvalidHostKey, paramiko.SSHException, ValueError, OSError) as e:
        raise CredentialError(
            f"Failed to parse known hosts file {known_hosts_path}: {e}"
        ) from e

    if not host_keys.keys():
        raise CredentialError(
            f"Failed to parse known hosts file {known_hosts_path}: no host keys found"
        )

    logger.debug(f"Loaded ssh credentials for user '{user}' from {key_path}")
    return SshCredentials(key_path, known_hosts_path, user, private_key, host_keys)


@dataclass(frozen=True)
class SigningKey:
    """An OpenPGP private key able to produce detached commit signatures.

    Attributes:
        key (pgpy.PGPKey): The private key.
        passphrase (str | None): The passphrase, if the key is protected. It was
            checked against the key when loading.
    """

    key: pgpy.PGPKey = field(repr=False)
    passphrase: str | None = field(default=None, repr=False)

    @property
    def fingerprint(self) -> str:
        return str(self.key.fingerprint)

    @property
    def identities(self) -> list[str]:
        return [format_uid(uid) for uid in self.key.userids]

    def sign(self, payload: bytes) -> str:
        """Returns an armored detached signature over `payload`."""
        message = pgpy.PGPMessage.new(payload, cleartext=False)
        try:
            if self.passphrase is None:
                return str(self.key.sign(message))
            with self.key.unlock(self.passphrase):
                return str(self.key.sign(message))
        except PGPError as e:
            raise SigningKeyError(f"Error signing with key {self.fingerprint}: {e}") from e


def format_uid(uid: pgpy.PGPUID) -> str:
    """Formats a user id as 'Name <email>'."""
    if uid.email:
        return f"{uid.name} <{uid.email}>"
    return uid.name


def load_signing_key(
    key_path: str | Path, passphrase_path: str | Path | None = None
) -> SigningKey:
    """Loads an armored OpenPGP private key, checking its passphrase if needed.

    Args:
        key_path (str | Path): Path of the armored private key.
        passphrase_path (str | Path | None, optional): Path of a file holding the
            passphrase. Required when the key is encrypted. A single trailing
            newline in the file is ignored.

    Returns:
        SigningKey: The usable signing key.

    Raises:
        SigningKeyError: If the file is unreadable, is not a private key, or is
            encrypted and the passphrase is missing or wrong.
    """
    try:
        armored = Path(key_path).read_text()
    except OSError as e:
        raise SigningKeyError(f"Error reading signing key {key_path}: {e}") from e

    try:
        key, _ = pgpy.PGPKey.from_blob(armored)
    except (PGPError, ValueError, NotImplementedError) as e:
        raise SigningKeyError(f"Error decoding signing key {key_path}: {e}") from e

    if key.is_public:
        raise SigningKeyError(f"Signing key {key_path} is not a gpg private key.")

    if not key.is_protected:
        return SigningKey(key)

    if not passphrase_path:
        raise SigningKeyError(
            f"Signing key {key_path} is encrypted and no passphrase "
            "was passed to decrypt it."
        )

    try:
        passphrase = Path(passphrase_path).read_text()
    except OSError as e:
        raise SigningKeyError(f"Error reading passphrase {passphrase_path}: {e}") from e
    passphrase = passphrase.removesuffix("\n").removesuffix("\r")

    try:
        with key.unlock(passphrase):
            pass
    except (PGPDecryptionError, PGPError) as e:
        raise SigningKeyError(
            f"Error decrypting signing key {key_path} with passphrase: {e}"
        ) from e

    return SigningKey(key, passphrase)
