# create2.py
from __future__ import annotations

from typing import Union

from web3 import Web3

from .errors import AddressDerivationError, InvalidSalt

# ---------------------------------------------------------------------
# Deterministic addresses (EIP-1014 / CREATE2)
# ---------------------------------------------------------------------
# address = keccak256(0xff ++ deployer ++ salt ++ keccak256(init_code))[12:]
#
# `deployer` is whatever contract executes CREATE2. For scripted deployments
# that is the deterministic deployment proxy below (same address on every
# chain), so the same salt + init code lands on the same address everywhere.
# ---------------------------------------------------------------------

DETERMINISTIC_DEPLOYMENT_PROXY = "0x4e59b44847b379578588920ca78fbf26c0b4956c"
SALT_LENGTH = 32
ZERO_SALT = b"\x00" * SALT_LENGTH

BytesLike = Union[bytes, bytearray, str]


def _hex_to_bytes(value: str) -> bytes:
    raw = value[2:] if value[:2] in ("0x", "0X") else value
    return bytes.fromhex(raw)


def _as_bytes(value: BytesLike) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return _hex_to_bytes(value)
    raise TypeError(f"expected bytes or hex string, got {type(value).__name__}")


def salt_bytes(salt: BytesLike) -> bytes:
    """Validate a salt: exactly 32 bytes, given as bytes or 0x-hex."""
    try:
        b = _as_bytes(salt)
    except (TypeError, ValueError) as e:
        raise InvalidSalt(salt, f"not a byte value ({e})") from e
    if len(b) != SALT_LENGTH:
        raise InvalidSalt(salt, f"expected {SALT_LENGTH} bytes, got {len(b)}")
    return b


def pad_salt(salt: BytesLike | None) -> bytes:
    """
    Left-pad a short salt to 32 bytes.

    Lets deploy scripts write `salt="0x7061796d61676963"`. None means the zero salt.
    Anything longer than 32 bytes is rejected rather than truncated.
    """
    if salt is None:
        return ZERO_SALT
    try:
        b = _as_bytes(salt)
    except (TypeError, ValueError) as e:
        raise InvalidSalt(salt, f"not a byte value ({e})") from e
    if len(b) > SALT_LENGTH:
        raise InvalidSalt(salt, f"longer than {SALT_LENGTH} bytes ({len(b)})")
    return b.rjust(SALT_LENGTH, b"\x00")


def init_code_hash(init_code: BytesLike) -> bytes:
    """keccak256 of creation bytecode + encoded constructor args."""
    try:
        return bytes(Web3.keccak(_as_bytes(init_code)))
    except (TypeError, ValueError) as e:
        raise AddressDerivationError(f"init code is not valid bytecode: {e}") from e


def derive(salt: BytesLike, init_code_hash: BytesLike, deployer: str) -> str:
    """
    Compute the CREATE2 address. Pure: no chain access.

    Returns the EIP-55 checksummed address.
    """
    s = salt_bytes(salt)

    try:
        h = _as_bytes(init_code_hash)
    except (TypeError, ValueError) as e:
        raise AddressDerivationError(f"init code hash is not a byte value: {e}") from e
    if len(h) != 32:
        raise AddressDerivationError(f"init code hash must be 32 bytes, got {len(h)}")

    if not isinstance(deployer, str) or not Web3.is_address(deployer):
        raise AddressDerivationError(f"invalid deployer address: {deployer!r}")
    d = _hex_to_bytes(deployer)

    digest = Web3.keccak(b"\xff" + d + s + h)
    return Web3.to_checksum_address("0x" + bytes(digest[12:]).hex())


def derive_from_init_code(
    init_code: BytesLike,
    *,
    salt: BytesLike | None = None,
    deployer: str = DETERMINISTIC_DEPLOYMENT_PROXY,
) -> str:
    """Convenience: pad the salt, hash the init code, derive."""
    return derive(pad_salt(salt), init_code_hash(init_code), deployer)
