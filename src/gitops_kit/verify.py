import logging
from collections.abc import Iterator, Sequence

import pgpy
from pgpy.errors import PGPError

from .commit import SIGNATURE_HEADER, parse_commit, render_commit
from .constants import APP_NAME
from .credentials import format_uid
from .errors import GitCommandError, VerificationError
from .events import EventKind, EventSink, emit
from .git_wrapper import GitRepo
from .memstore import MemoryRepository

logger = logging.getLogger(APP_NAME)


def split_signature(raw: str) -> tuple[str | None, str]:
    """Separates a raw commit object into its signature and the signed payload.

    Args:
        raw (str): The raw commit object.

    Returns:
        tuple[str | None, str]: The armored signature (None if unsigned) and the
        commit text with the signature header removed.
    """
    headers, message = parse_commit(raw)
    signature = None
    unsigned = []
    for key, value in headers:
        if key == SIGNATURE_HEADER and signature is None:
            signature = value
        else:
            unsigned.append((key, value))
    return signature, render_commit(unsigned, message)


def _keyring_keys(armored_keyring: str) -> Iterator[pgpy.PGPKey]:
    """Yields every primary key found in an armored keyring block."""
    key, others = pgpy.PGPKey.from_blob(armored_keyring)
    yield key
    for other in others.values():
        if isinstance(other, pgpy.PGPKey) and other.is_primary and other is not key:
            yield other


def _verify_with_keyring(
    armored_keyring: str, signature: pgpy.PGPSignature, payload: bytes
) -> pgpy.PGPKey | None:
    """Returns the key of the keyring that verifies the signature, if any."""
    try:
        keys = list(_keyring_keys(armored_keyring))
    except (PGPError, ValueError, NotImplementedError) as e:
        logger.warning(f"Skipping unparsable keyring: {e}")
        return None

    for key in keys:
        if signature.signer != key.fingerprint.keyid and signature.signer not in key.subkeys:
            continue
        try:
            # A detached signature is checked against the raw signed bytes.
            if key.verify(payload, signature):
                return key
        except PGPError as e:
            logger.debug(f"Verification with key {key.fingerprint} failed: {e}")
    return None


def verify_top_commit(
    repo: GitRepo | MemoryRepository,
    armored_keyrings: Sequence[str],
    sink: EventSink | None = None,
) -> None:
    """Verifies that the top commit is signed by one of the given keys.

    Keyrings are tried in order and the first one that verifies the signature
    wins.

    Args:
        repo (GitRepo | MemoryRepository): The working copy or in-memory clone.
        armored_keyrings (Sequence[str]): Armored public key blocks.
        sink (EventSink | None, optional): Receives progress events.

    Raises:
        VerificationError: If HEAD cannot be read, or no keyring verifies the
            signature (including when the commit is unsigned).
    """
    try:
        head = repo.head()
        raw = repo.cat_commit(head)
    except (GitCommandError, KeyError) as e:
        raise VerificationError(f"Error accessing repo head in {repo.path}: {e}") from e

    armored_signature, payload = split_signature(raw)
    untrusted = VerificationError(
        f'Top commit "{head}" isn\'t signed with any of the trusted keys'
    )
    if armored_signature is None:
        raise untrusted

    try:
        signature = pgpy.PGPSignature.from_blob(armored_signature)
    except (PGPError, ValueError, NotImplementedError) as e:
        raise VerificationError(
            f'Error parsing signature of top commit "{head}": {e}'
        ) from e

    for armored_keyring in armored_keyrings:
        key = _verify_with_keyring(armored_keyring, signature, payload.encode("utf-8"))
        if key is not None:
            emit(
                sink,
                EventKind.VERIFIED,
                commit=head,
                fingerprint=str(key.fingerprint),
                signers=[format_uid(uid) for uid in key.userids],
            )
            return

    raise untrusted
