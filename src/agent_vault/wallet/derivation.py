"""Key derivation engine: BIP-39 mnemonics and per-chain child keys.

Each chain has its own curve, derivation convention and address encoding:

* ``cketh``    secp256k1, BIP-44, EIP-55 address (via eth-account)
* ``icp``      secp256k1, BIP-44, self-authenticating principal
* ``solana``   ed25519, SLIP-10 (hardened only), base58 public key
* ``polkadot`` sr25519, Substrate junction paths, SS58 address

Derivation is deterministic: once a mnemonic or private key is supplied
nothing here touches a random source.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import re
import zlib
from dataclasses import dataclass, field
from typing import Optional

from bip_utils import (
    Base58Decoder,
    Base58Encoder,
    Bip32Slip10Ed25519,
    Bip32Slip10Secp256k1,
    SS58Decoder,
    SS58Encoder,
    Substrate,
    SubstrateBip39SeedGenerator,
    SubstrateCoins,
)
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from eth_account import Account
from eth_keys import keys as eth_keys
from mnemonic import Mnemonic
from nacl.signing import SigningKey

from agent_vault.errors import (
    InvalidEntropyError,
    InvalidKeyError,
    ValidationError,
    WalletError,
)
from agent_vault.wallet.chains import ChainType, Curve, get_chain, normalize_chain
from agent_vault.wallet.models import CreationMethod

logger = logging.getLogger("agent_vault.wallet.derivation")

Account.enable_unaudited_hdwallet_features()

ENTROPY_WORD_COUNTS: dict[int, int] = {128: 12, 160: 15, 192: 18, 224: 21, 256: 24}

HARDENED_OFFSET = 0x80000000

POLKADOT_SS58_PREFIX = 0

# secp256k1 group order; valid private scalars are 1..n-1.
_SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

_BIP32_PATH_RE = re.compile(r"^m(/\d+['hH]?)*$")
_SUBSTRATE_PATH_RE = re.compile(r"^(//?[^/]+)+$")

_mnemo = Mnemonic("english")


@dataclass(frozen=True)
class DerivedKey:
    """Key material and address produced for one chain.

    ``private_key`` is the importable form (what ``derive_wallet_key``
    accepts back with method ``private-key``); ``signing_key`` is the secret
    the chain's signature scheme consumes. They differ only for sr25519.
    """

    chain: ChainType
    private_key: bytes = field(repr=False)
    signing_key: bytes = field(repr=False)
    public_key: bytes
    address: str
    derivation_path: Optional[str] = None

    @property
    def private_key_hex(self) -> str:
        return self.private_key.hex()

    @property
    def public_key_hex(self) -> str:
        return "0x" + self.public_key.hex()


# ---------------------------------------------------------------------------
# Mnemonics
# ---------------------------------------------------------------------------

def normalize_phrase(phrase: str) -> str:
    """Lower-case and collapse whitespace so equivalent phrases compare equal."""
    return " ".join(phrase.lower().split())


def generate_mnemonic(entropy_bits: int = 128) -> str:
    """Generate a checksum-valid English BIP-39 mnemonic.

    Raises ``InvalidEntropyError`` unless *entropy_bits* is one of 128, 160,
    192, 224 or 256.
    """
    if entropy_bits not in ENTROPY_WORD_COUNTS:
        raise InvalidEntropyError(
            f"Unsupported entropy size {entropy_bits} bits. "
            f"Supported: {sorted(ENTROPY_WORD_COUNTS)}"
        )
    return _mnemo.generate(strength=entropy_bits)


def validate_seed_phrase(phrase: str) -> bool:
    """Check word count, wordlist membership and the embedded checksum."""
    if not isinstance(phrase, str):
        return False
    normalized = normalize_phrase(phrase)
    if len(normalized.split(" ")) not in ENTROPY_WORD_COUNTS.values():
        return False
    try:
        return _mnemo.check(normalized)
    except (ValueError, LookupError):
        return False


def mnemonic_to_seed(phrase: str, passphrase: str = "") -> bytes:
    """Convert a mnemonic into the 64-byte BIP-39 seed."""
    return Mnemonic.to_seed(normalize_phrase(phrase), passphrase=passphrase)


# ---------------------------------------------------------------------------
# Derivation paths
# ---------------------------------------------------------------------------

def parse_derivation_path(path: str) -> list[int]:
    """Parse ``m/44'/60'/0'/0/0`` into BIP-32 child indices.

    Hardened levels (``'``, ``h`` or ``H``) get the hardened offset added.
    Raises ``ValidationError`` for malformed paths.
    """
    path = path.strip()
    if not _BIP32_PATH_RE.match(path):
        raise ValidationError(f"Invalid BIP-32 derivation path: {path!r}")
    indices: list[int] = []
    for level in path.split("/")[1:]:
        hardened = level[-1] in "'hH"
        index = int(level.rstrip("'hH"))
        if index >= HARDENED_OFFSET:
            raise ValidationError(f"Derivation index out of range in {path!r}")
        indices.append(index + HARDENED_OFFSET if hardened else index)
    return indices


def build_derivation_path(
    coin_type: int,
    account: int = 0,
    change: int | None = 0,
    index: int | None = 0,
    *,
    hardened_tail: bool = False,
) -> str:
    """Build a BIP-44 style path string.

    ``change``/``index`` may be ``None`` to stop the path early (Solana uses
    ``m/44'/501'/0'/0'``). ``hardened_tail`` hardens the trailing levels.
    """
    tail_mark = "'" if hardened_tail else ""
    path = f"m/44'/{coin_type}'/{account}'"
    if change is not None:
        path += f"/{change}{tail_mark}"
        if index is not None:
            path += f"/{index}{tail_mark}"
    return path


def get_default_derivation_path(chain: ChainType | str) -> str:
    return get_chain(chain).default_derivation_path


def _check_path(chain: ChainType, path: str) -> str:
    path = path.strip()
    if get_chain(chain).curve is Curve.SR25519:
        if not _SUBSTRATE_PATH_RE.match(path):
            raise ValidationError(f"Invalid Substrate derivation path: {path!r}")
        return path
    indices = parse_derivation_path(path)
    if get_chain(chain).curve is Curve.ED25519 and any(
        i < HARDENED_OFFSET for i in indices
    ):
        raise ValidationError(
            f"ed25519 derivation only supports hardened levels: {path!r}"
        )
    return re.sub(r"[hH]", "'", path)


# ---------------------------------------------------------------------------
# Address encoders
# ---------------------------------------------------------------------------

def _secp256k1_public_key(private_key: bytes) -> ec.EllipticCurvePublicKey:
    scalar = int.from_bytes(private_key, "big")
    if not 0 < scalar < _SECP256K1_N:
        raise InvalidKeyError("Private key is outside the secp256k1 range")
    return ec.derive_private_key(scalar, ec.SECP256K1()).public_key()


def icp_principal_from_der(der_public_key: bytes) -> bytes:
    """Self-authenticating principal: sha224(DER public key) + 0x02."""
    return hashlib.sha224(der_public_key).digest() + b"\x02"


def icp_principal_to_text(principal: bytes) -> str:
    checksum = zlib.crc32(principal).to_bytes(4, "big")
    encoded = base64.b32encode(checksum + principal).decode("ascii").lower().rstrip("=")
    return "-".join(encoded[i:i + 5] for i in range(0, len(encoded), 5))


def icp_principal_from_text(text: str) -> bytes:
    """Decode and checksum-verify a textual principal.

    Raises ``ValidationError`` on malformed text or checksum mismatch.
    """
    compact = text.replace("-", "").upper()
    padded = compact + "=" * (-len(compact) % 8)
    try:
        raw = base64.b32decode(padded)
    except ValueError as exc:
        raise ValidationError(f"Invalid principal {text!r}") from exc
    if len(raw) < 4:
        raise ValidationError(f"Invalid principal {text!r}")
    checksum, principal = raw[:4], raw[4:]
    if zlib.crc32(principal).to_bytes(4, "big") != checksum:
        raise ValidationError(f"Principal checksum mismatch for {text!r}")
    if icp_principal_to_text(principal) != text:
        raise ValidationError(f"Principal {text!r} is not in canonical form")
    return principal


def icp_account_identifier(principal: bytes, subaccount: bytes = bytes(32)) -> str:
    """Ledger account identifier (hex) for a principal and subaccount."""
    digest = hashlib.sha224(b"\x0aaccount-id" + principal + subaccount).digest()
    return (zlib.crc32(digest).to_bytes(4, "big") + digest).hex()


def decode_ss58(address: str) -> tuple[int, bytes]:
    return SS58Decoder.Decode(address)


def decode_base58(address: str) -> bytes:
    return Base58Decoder.Decode(address)


# ---------------------------------------------------------------------------
# Per-curve key builders
# ---------------------------------------------------------------------------

def _evm_key(private_key: bytes, path: str | None) -> DerivedKey:
    if not 0 < int.from_bytes(private_key, "big") < _SECP256K1_N:
        raise InvalidKeyError("Private key is outside the secp256k1 range")
    account = Account.from_key(private_key)
    public_key = eth_keys.PrivateKey(private_key).public_key.to_bytes()
    return DerivedKey(
        chain=ChainType.CKETH,
        private_key=private_key,
        signing_key=private_key,
        public_key=public_key,
        address=account.address,
        derivation_path=path,
    )


def _icp_key(private_key: bytes, path: str | None) -> DerivedKey:
    public_key = _secp256k1_public_key(private_key)
    der = public_key.public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )
    uncompressed = public_key.public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
    )
    return DerivedKey(
        chain=ChainType.ICP,
        private_key=private_key,
        signing_key=private_key,
        public_key=uncompressed,
        address=icp_principal_to_text(icp_principal_from_der(der)),
        derivation_path=path,
    )


def _solana_key(seed: bytes, path: str | None) -> DerivedKey:
    verify_key = SigningKey(seed).verify_key.encode()
    return DerivedKey(
        chain=ChainType.SOLANA,
        private_key=seed,
        signing_key=seed,
        public_key=verify_key,
        address=Base58Encoder.Encode(verify_key),
        derivation_path=path,
    )


def _substrate_key(ctx: Substrate, private_key: bytes, path: str | None) -> DerivedKey:
    public_key = ctx.PublicKey().RawCompressed().ToBytes()[-32:]
    return DerivedKey(
        chain=ChainType.POLKADOT,
        private_key=private_key,
        signing_key=ctx.PrivateKey().Raw().ToBytes(),
        public_key=public_key,
        address=SS58Encoder.Encode(public_key, POLKADOT_SS58_PREFIX),
        derivation_path=path,
    )


def parse_private_key(private_key: str, chain: ChainType) -> bytes:
    """Decode a hex private key, checking the chain's accepted lengths.

    Raises ``InvalidKeyError``.
    """
    if not isinstance(private_key, str) or not private_key.strip():
        raise InvalidKeyError("Private key is required for method 'private-key'")
    text = private_key.strip()
    if text[:2].lower() == "0x":
        text = text[2:]
    try:
        raw = bytes.fromhex(text)
    except ValueError as exc:
        raise InvalidKeyError("Private key must be hex-encoded") from exc

    allowed = {32}
    if chain in (ChainType.SOLANA, ChainType.POLKADOT):
        allowed.add(64)
    if len(raw) not in allowed:
        raise InvalidKeyError(
            f"{chain.value} private key must be {' or '.join(str(n) for n in sorted(allowed))} "
            f"bytes, got {len(raw)}"
        )
    return raw


def key_from_private_key(chain: ChainType, private_key: str) -> DerivedKey:
    raw = parse_private_key(private_key, chain)

    if chain is ChainType.CKETH:
        return _evm_key(raw, None)
    if chain is ChainType.ICP:
        return _icp_key(raw, None)
    if chain is ChainType.SOLANA:
        seed = raw[:32]
        derived = _solana_key(seed, None)
        # 64-byte form is seed || public key, as written by solana-keygen.
        if len(raw) == 64 and raw[32:] != derived.public_key:
            raise InvalidKeyError("Solana keypair public half does not match its seed")
        return derived
    if chain is ChainType.POLKADOT:
        try:
            if len(raw) == 32:
                ctx = Substrate.FromSeed(raw, SubstrateCoins.POLKADOT)
            else:
                ctx = Substrate.FromPrivateKey(raw, SubstrateCoins.POLKADOT)
        except Exception as exc:
            raise InvalidKeyError(f"Invalid sr25519 key: {exc}") from exc
        return _substrate_key(ctx, raw, None)
    raise ValidationError(f"No key builder for chain {chain.value}")


def key_from_seed_phrase(
    chain: ChainType, phrase: str, derivation_path: str | None = None
) -> DerivedKey:
    if not isinstance(phrase, str) or not validate_seed_phrase(phrase):
        raise ValidationError("Invalid seed phrase: word count, word list or checksum mismatch")
    phrase = normalize_phrase(phrase)
    path = _check_path(chain, derivation_path or get_default_derivation_path(chain))

    try:
        if chain is ChainType.POLKADOT:
            mini_secret = SubstrateBip39SeedGenerator(phrase).Generate()
            ctx = Substrate.FromSeedAndPath(mini_secret, path, SubstrateCoins.POLKADOT)
            return _substrate_key(ctx, ctx.PrivateKey().Raw().ToBytes(), path)

        seed = mnemonic_to_seed(phrase)
        if chain is ChainType.CKETH:
            account = Account.from_mnemonic(phrase, account_path=path)
            return _evm_key(bytes(account.key), path)
        if chain is ChainType.ICP:
            node = Bip32Slip10Secp256k1.FromSeedAndPath(seed, path)
            return _icp_key(node.PrivateKey().Raw().ToBytes(), path)
        if chain is ChainType.SOLANA:
            node = Bip32Slip10Ed25519.FromSeedAndPath(seed, path)
            return _solana_key(node.PrivateKey().Raw().ToBytes(), path)
    except WalletError:
        raise
    except Exception as exc:
        raise ValidationError(f"Derivation along {path!r} failed: {exc}") from exc
    raise ValidationError(f"No key builder for chain {chain.value}")


def derive_wallet_key(
    method: CreationMethod | str,
    seed_phrase: str | None = None,
    private_key: str | None = None,
    derivation_path: str | None = None,
    chain: ChainType | str = ChainType.CKETH,
) -> DerivedKey:
    """Derive key material and address for *chain*.

    ``private-key`` parses the key directly; ``seed``/``mnemonic`` validate
    the phrase and derive along *derivation_path* (or the chain default).

    Raises ``InvalidKeyError``, ``ValidationError``.
    """
    chain = normalize_chain(chain)
    try:
        method = CreationMethod(method)
    except ValueError as exc:
        raise ValidationError(f"Unknown creation method {method!r}") from exc

    if method is CreationMethod.PRIVATE_KEY:
        derived = key_from_private_key(chain, private_key or "")
    else:
        derived = key_from_seed_phrase(chain, seed_phrase or "", derivation_path)
    logger.debug(f"Derived {chain.value} key via {method.value} -> {derived.address}")
    return derived
