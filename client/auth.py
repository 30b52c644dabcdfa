"""
Authentication: wallet setup and API credential derivation.
"""

from py_clob_client.client import ClobClient
from py_clob_client.clob_types import ApiCreds

from config import Config


class MissingCredentials(Exception):
    """Raised when live trading is requested without a wallet configured."""
    pass


def build_clob_client(cfg: Config) -> ClobClient:
    """
    Build an authenticated ClobClient ready for trading.
    Steps:
      1. Create L1 client with private key and funder address
      2. Derive or create API credentials (L2)
      3. Return fully authenticated client
    """
    if not cfg.has_credentials:
        raise MissingCredentials("PRIVATE_KEY and POLYMARKET_PROFILE_ADDRESS must be set")

    # L1 client: wallet key + funder (proxy) address
    client = ClobClient(
        host=cfg.clob_host,
        chain_id=cfg.chain_id,
        key=cfg.private_key,
        signature_type=cfg.signature_type,
        funder=cfg.polymarket_profile_address,
    )

    # Derive L2 API credentials (creates them on first use)
    creds: ApiCreds = client.create_or_derive_api_creds()
    client.set_api_creds(creds)

    return client
