import hashlib
import unittest

from stellar_sdk import Keypair, StrKey

from lumenitos.address import (
    contract_id_preimage,
    derive_contract_address,
    derive_contract_id,
    derive_self_deployed_address,
    owner_key_bytes,
)
from lumenitos.constants import MAINNET_PASSPHRASE, TESTNET_PASSPHRASE
from lumenitos.errors import AddressDerivationError

FACTORY = "CDUIY5ADZ6MXJFKWMCTU2W3LN3UZJM3UNUTXPZBFA7FRB4UN22IETNIP"
# Owner seed is bytes 0..31; addresses below are for testnet.
OWNER_G = "GAB2CB576PHBBPQ5ODORRZ2LYCMWPZGWGCN2KDK7DXOIMZASKUY3QZ6Q"
FACTORY_DEPLOYED = "CCWITLPYYDHLM3U6WLURLW2QEBJNMRUBDJGMSQDA2OF5TEIZPIQJYFDO"
SELF_DEPLOYED = "CDX3NR2GB3GDDXNPKKSQ5DMUIY3UL7VRVYQKDIHKLJXX6B5JPKHWSRJX"


class AddressDerivationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.owner = Keypair.from_raw_ed25519_seed(bytes(range(32)))

    def test_address_is_deterministic(self) -> None:
        first = derive_contract_address(self.owner.public_key, FACTORY, TESTNET_PASSPHRASE)
        second = derive_contract_address(self.owner.raw_public_key(), FACTORY, TESTNET_PASSPHRASE)
        self.assertEqual(first, second)
        self.assertTrue(StrKey.is_valid_contract(first))

    def test_distinct_owners_get_distinct_addresses(self) -> None:
        other = Keypair.from_raw_ed25519_seed(bytes(range(1, 33)))
        self.assertNotEqual(
            derive_contract_address(self.owner.public_key, FACTORY, TESTNET_PASSPHRASE),
            derive_contract_address(other.public_key, FACTORY, TESTNET_PASSPHRASE),
        )

    def test_network_and_deployer_change_the_address(self) -> None:
        base = derive_contract_address(self.owner.public_key, FACTORY, TESTNET_PASSPHRASE)
        self.assertNotEqual(base, derive_contract_address(self.owner.public_key, FACTORY, MAINNET_PASSPHRASE))
        self.assertNotEqual(base, derive_self_deployed_address(self.owner.public_key, TESTNET_PASSPHRASE))

    def test_known_factory_address(self) -> None:
        self.assertEqual(self.owner.public_key, OWNER_G)
        self.assertEqual(
            derive_contract_address(self.owner.public_key, FACTORY, TESTNET_PASSPHRASE),
            FACTORY_DEPLOYED,
        )

    def test_known_self_deployed_address(self) -> None:
        self.assertEqual(derive_self_deployed_address(self.owner.public_key, TESTNET_PASSPHRASE), SELF_DEPLOYED)
        self.assertEqual(
            derive_contract_address(self.owner.raw_public_key(), OWNER_G, TESTNET_PASSPHRASE),
            SELF_DEPLOYED,
        )

    def test_contract_id_hashes_the_preimage(self) -> None:
        preimage = contract_id_preimage(self.owner.raw_public_key(), FACTORY, TESTNET_PASSPHRASE)
        expected = hashlib.sha256(preimage.to_xdr_bytes()).digest()
        self.assertEqual(derive_contract_id(self.owner.public_key, FACTORY, TESTNET_PASSPHRASE), expected)
        self.assertEqual(
            derive_contract_address(self.owner.public_key, FACTORY, TESTNET_PASSPHRASE),
            StrKey.encode_contract(expected),
        )

    def test_wrong_key_length_rejected(self) -> None:
        with self.assertRaises(AddressDerivationError):
            owner_key_bytes(b"\x01" * 31)

    def test_small_order_point_rejected(self) -> None:
        with self.assertRaises(AddressDerivationError):
            derive_contract_address(b"\x01" + b"\x00" * 31, FACTORY, TESTNET_PASSPHRASE)

    def test_invalid_strkey_rejected(self) -> None:
        with self.assertRaises(AddressDerivationError):
            owner_key_bytes("GNOTAKEY")

    def test_invalid_deployer_rejected(self) -> None:
        with self.assertRaises(AddressDerivationError):
            derive_contract_address(self.owner.public_key, "not-an-address", TESTNET_PASSPHRASE)


if __name__ == "__main__":
    unittest.main()
