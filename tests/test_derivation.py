"""
Tests for the key derivation engine

Tests:
- Mnemonic generation and checksum validation
- Derivation path parsing
- Per-chain key derivation from mnemonics and private keys
- Determinism and round-tripping through the private-key import path
"""

import pytest

from agent_vault.errors import InvalidEntropyError, InvalidKeyError, ValidationError
from agent_vault.wallet.chains import ChainType
from agent_vault.wallet.derivation import (
    HARDENED_OFFSET,
    build_derivation_path,
    decode_base58,
    decode_ss58,
    derive_wallet_key,
    generate_mnemonic,
    get_default_derivation_path,
    icp_principal_from_text,
    mnemonic_to_seed,
    parse_derivation_path,
    validate_seed_phrase,
)
from agent_vault.wallet.models import CreationMethod

from conftest import ABANDON_ETH_ADDRESS, ABANDON_MNEMONIC, ETH_ADDRESS, ETH_PRIVATE_KEY

ALL_CHAINS = list(ChainType)


class TestMnemonicGeneration:
    """Test mnemonic generation and validation"""

    def test_default_is_twelve_words(self):
        """128 bits of entropy produce 12 words that validate"""
        phrase = generate_mnemonic(128)

        assert len(phrase.split(" ")) == 12
        assert validate_seed_phrase(phrase)

    @pytest.mark.parametrize("bits,words", [(160, 15), (192, 18), (224, 21), (256, 24)])
    def test_supported_entropy_sizes(self, bits, words):
        """Each supported entropy size maps to its fixed word count"""
        phrase = generate_mnemonic(bits)

        assert len(phrase.split()) == words
        assert validate_seed_phrase(phrase)

    @pytest.mark.parametrize("bits", [0, 64, 127, 129, 512])
    def test_unsupported_entropy_rejected(self, bits):
        """Unsupported entropy sizes raise InvalidEntropyError"""
        with pytest.raises(InvalidEntropyError):
            generate_mnemonic(bits)

    def test_generated_phrases_differ(self):
        """Two generated phrases are not the same"""
        assert generate_mnemonic() != generate_mnemonic()


class TestSeedPhraseValidation:
    """Test validate_seed_phrase never raises and catches bad phrases"""

    def test_known_vector_is_valid(self):
        assert validate_seed_phrase(ABANDON_MNEMONIC)

    def test_bad_checksum_is_invalid(self):
        """Twelve 'abandon' words fail the checksum"""
        assert not validate_seed_phrase("abandon " * 11 + "abandon")

    def test_word_mutation_is_invalid(self):
        """Replacing any word with a non-wordlist token invalidates the phrase"""
        words = generate_mnemonic().split()
        for i in range(len(words)):
            mutated = words.copy()
            mutated[i] = "notaword"
            assert not validate_seed_phrase(" ".join(mutated))

    def test_wrong_word_count_is_invalid(self):
        assert not validate_seed_phrase(" ".join(ABANDON_MNEMONIC.split()[:11]))

    @pytest.mark.parametrize("junk", ["", "   ", None, 42, "abandon"])
    def test_junk_input_returns_false(self, junk):
        """Garbage input returns False rather than raising"""
        assert validate_seed_phrase(junk) is False

    def test_whitespace_and_case_are_normalized(self):
        messy = "  " + ABANDON_MNEMONIC.upper().replace(" ", "   ") + "\n"
        assert validate_seed_phrase(messy)

    def test_seed_is_64_bytes(self):
        assert len(mnemonic_to_seed(ABANDON_MNEMONIC)) == 64


class TestDerivationPaths:
    """Test BIP-32 path parsing and building"""

    def test_parse_bip44_path(self):
        assert parse_derivation_path("m/44'/60'/0'/0/0") == [
            44 + HARDENED_OFFSET,
            60 + HARDENED_OFFSET,
            0 + HARDENED_OFFSET,
            0,
            0,
        ]

    def test_h_suffix_means_hardened(self):
        assert parse_derivation_path("m/44h/60H/0'") == parse_derivation_path("m/44'/60'/0'")

    @pytest.mark.parametrize("path", ["44'/60'", "m/abc", "m//0", "m/0/", "x/0"])
    def test_malformed_paths_rejected(self, path):
        with pytest.raises(ValidationError):
            parse_derivation_path(path)

    def test_index_out_of_range(self):
        with pytest.raises(ValidationError):
            parse_derivation_path(f"m/{HARDENED_OFFSET}")

    def test_build_paths(self):
        assert build_derivation_path(60) == "m/44'/60'/0'/0/0"
        assert build_derivation_path(501, change=0, index=None, hardened_tail=True) == "m/44'/501'/0'/0'"

    def test_default_paths(self):
        assert get_default_derivation_path("cketh") == "m/44'/60'/0'/0/0"
        assert get_default_derivation_path("dot") == "//hard//stash"
        assert get_default_derivation_path(ChainType.SOLANA) == "m/44'/501'/0'/0'"
        assert get_default_derivation_path(ChainType.ICP) == "m/44'/223'/0'/0/0"


class TestEthereumDerivation:
    """Test secp256k1/EIP-55 derivation against known vectors"""

    def test_mnemonic_vector(self):
        """The all-abandon mnemonic derives the well-known first account"""
        key = derive_wallet_key(CreationMethod.MNEMONIC, seed_phrase=ABANDON_MNEMONIC, chain="cketh")

        assert key.address == ABANDON_ETH_ADDRESS
        assert key.derivation_path == "m/44'/60'/0'/0/0"

    def test_private_key_vector(self):
        key = derive_wallet_key("private-key", private_key=ETH_PRIVATE_KEY, chain="eth")

        assert key.address == ETH_ADDRESS
        assert key.derivation_path is None
        assert len(key.public_key) == 64

    def test_private_key_without_prefix_and_padded(self):
        key = derive_wallet_key("private-key", private_key="  " + ETH_PRIVATE_KEY[2:] + " ", chain="cketh")
        assert key.address == ETH_ADDRESS

    def test_custom_path_changes_address(self):
        key = derive_wallet_key(
            "seed", seed_phrase=ABANDON_MNEMONIC, derivation_path="m/44'/60'/0'/0/1", chain="cketh"
        )
        assert key.address != ABANDON_ETH_ADDRESS


class TestPrivateKeyErrors:
    """Test malformed private keys raise InvalidKeyError"""

    @pytest.mark.parametrize("bad", ["", "0x", "zz" * 32, "ab" * 31, "ab" * 33])
    def test_malformed_keys(self, bad):
        with pytest.raises(InvalidKeyError):
            derive_wallet_key("private-key", private_key=bad, chain="cketh")

    def test_zero_key_out_of_range(self):
        with pytest.raises(InvalidKeyError):
            derive_wallet_key("private-key", private_key="00" * 32, chain="icp")

    def test_64_byte_key_rejected_for_secp256k1(self):
        with pytest.raises(InvalidKeyError):
            derive_wallet_key("private-key", private_key="11" * 64, chain="cketh")


class TestPerChainDerivation:
    """Test every supported chain derives deterministic, well-formed keys"""

    @pytest.mark.parametrize("chain", ALL_CHAINS)
    def test_deterministic(self, chain):
        """Same phrase, path and chain give byte-identical keys"""
        first = derive_wallet_key("mnemonic", seed_phrase=ABANDON_MNEMONIC, chain=chain)
        second = derive_wallet_key("mnemonic", seed_phrase=ABANDON_MNEMONIC, chain=chain)

        assert first.private_key == second.private_key
        assert first.public_key == second.public_key
        assert first.address == second.address

    @pytest.mark.parametrize("chain", ALL_CHAINS)
    def test_private_key_reimport_matches(self, chain):
        """Re-importing the derived private key reproduces the address"""
        derived = derive_wallet_key("mnemonic", seed_phrase=ABANDON_MNEMONIC, chain=chain)
        again = derive_wallet_key("private-key", private_key=derived.private_key_hex, chain=chain)

        assert again.address == derived.address
        assert again.public_key == derived.public_key

    def test_chains_give_distinct_addresses(self):
        addresses = {
            derive_wallet_key("mnemonic", seed_phrase=ABANDON_MNEMONIC, chain=c).address
            for c in ALL_CHAINS
        }
        assert len(addresses) == len(ALL_CHAINS)

    def test_polkadot_ss58_prefix_zero(self):
        key = derive_wallet_key("mnemonic", seed_phrase=ABANDON_MNEMONIC, chain="polkadot")
        prefix, public_key = decode_ss58(key.address)

        assert prefix == 0
        assert public_key == key.public_key
        assert key.address.startswith("1")

    def test_polkadot_junction_paths(self):
        stash = derive_wallet_key("mnemonic", seed_phrase=ABANDON_MNEMONIC, chain="polkadot")
        soft = derive_wallet_key(
            "mnemonic", seed_phrase=ABANDON_MNEMONIC, derivation_path="//hard/soft", chain="polkadot"
        )
        assert stash.address != soft.address

    def test_polkadot_rejects_bip32_path(self):
        with pytest.raises(ValidationError):
            derive_wallet_key(
                "mnemonic", seed_phrase=ABANDON_MNEMONIC, derivation_path="m/44'/354'", chain="polkadot"
            )

    def test_solana_address_is_base58_public_key(self):
        key = derive_wallet_key("mnemonic", seed_phrase=ABANDON_MNEMONIC, chain="solana")

        assert decode_base58(key.address) == key.public_key
        assert len(key.public_key) == 32

    def test_solana_rejects_soft_levels(self):
        with pytest.raises(ValidationError):
            derive_wallet_key(
                "mnemonic", seed_phrase=ABANDON_MNEMONIC, derivation_path="m/44'/501'/0'/0", chain="sol"
            )

    def test_solana_64_byte_keypair_import(self):
        derived = derive_wallet_key("mnemonic", seed_phrase=ABANDON_MNEMONIC, chain="solana")
        keypair_hex = (derived.private_key + derived.public_key).hex()

        imported = derive_wallet_key("private-key", private_key=keypair_hex, chain="solana")
        assert imported.address == derived.address

    def test_solana_mismatched_keypair_rejected(self):
        derived = derive_wallet_key("mnemonic", seed_phrase=ABANDON_MNEMONIC, chain="solana")
        with pytest.raises(InvalidKeyError):
            derive_wallet_key(
                "private-key", private_key=(derived.private_key + bytes(32)).hex(), chain="solana"
            )

    def test_icp_principal_format(self):
        key = derive_wallet_key("mnemonic", seed_phrase=ABANDON_MNEMONIC, chain="icp")
        principal = icp_principal_from_text(key.address)

        # self-authenticating: sha224 digest + 0x02 tag
        assert len(principal) == 29
        assert principal[-1] == 0x02
        assert len(key.address) == 63


class TestDerivationErrors:
    """Test invalid inputs surface as typed errors"""

    def test_invalid_mnemonic(self):
        with pytest.raises(ValidationError):
            derive_wallet_key("mnemonic", seed_phrase="abandon " * 12, chain="cketh")

    def test_missing_mnemonic(self):
        with pytest.raises(ValidationError):
            derive_wallet_key("seed", chain="cketh")

    def test_unknown_chain(self):
        with pytest.raises(ValidationError):
            derive_wallet_key("mnemonic", seed_phrase=ABANDON_MNEMONIC, chain="dogecoin")

    def test_unknown_method(self):
        with pytest.raises(ValidationError):
            derive_wallet_key("brainwallet", seed_phrase=ABANDON_MNEMONIC)
