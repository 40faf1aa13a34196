"""Lumenitos constants and defaults."""

TESTNET_PASSPHRASE = "Test SDF Network ; September 2015"
MAINNET_PASSPHRASE = "Public Global Stellar Network ; September 2015"

NETWORK_PASSPHRASES = {
    "testnet": TESTNET_PASSPHRASE,
    "mainnet": MAINNET_PASSPHRASE,
}

DEFAULT_RPC_URLS = {
    "testnet": "https://soroban-testnet.stellar.org",
    "mainnet": "https://rpc.lightsail.network",
}

DEFAULT_FRIENDBOT_URL = "https://friendbot.stellar.org"

# Hosted fee-paying relayer (OpenZeppelin Channels).
DEFAULT_RELAY_URLS = {
    "testnet": "https://channels.openzeppelin.com/testnet",
    "mainnet": "https://channels.openzeppelin.com",
}

# Testnet deployment of the account factory (deployer of every account contract).
DEFAULT_FACTORY_ADDRESS = "CDUIY5ADZ6MXJFKWMCTU2W3LN3UZJM3UNUTXPZBFA7FRB4UN22IETNIP"
DEFAULT_FACTORY_WASM_HASH = "f0a485779f0112659461678dd2d0e4ffeb4120d2e0afa9dc70c44b1be2d772cf"

DEFAULT_CONFIG_FILE = "lumenitos.toml"
DEFAULT_ACCOUNT_WASM_PATH = "contracts/simple_account/out/simple_account.wasm"

# Extra CPU instructions for __check_auth signature verification that simulation cannot see.
DEFAULT_INSTRUCTION_MARGIN = 1_000_000
# Signature expiration window (~5 minutes).
DEFAULT_AUTH_VALIDITY_LEDGERS = 60
# Bump if fewer than this many ledgers remain (~1 day).
DEFAULT_TTL_BUMP_THRESHOLD = 17_280
# Maximum single-step TTL extension (~29 days).
DEFAULT_MAX_TTL_EXTENSION = 500_000

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_MAX_POLL_ATTEMPTS = 10
DEFAULT_MAINTENANCE_POLL_ATTEMPTS = 30

# Fees are in stroops.
INVOKE_BASE_FEE = 10_000
DEPLOY_BASE_FEE = 10_000_000
TX_TIMEOUT_SECONDS = 30
MAINTENANCE_TX_TIMEOUT_SECONDS = 300

STROOPS_PER_XLM = 10_000_000
XLM_DECIMALS = 7

HISTORY_LEDGER_WINDOW = 10_000
HISTORY_EVENT_LIMIT = 100

ED25519_PUBLIC_KEY_BYTES = 32
ED25519_SIGNATURE_BYTES = 64
