"""
Security utilities.

Address masking for logs and endpoint transport checks.
"""

from urllib.parse import urlparse

from loguru import logger

from chain_indexer.utils.exceptions import InsecureEndpointError


def mask_address(address: str | None) -> str:
    """
    Mask contract address for logging: 0x1234...5678

    Args:
        address: Address to mask

    Returns:
        Masked address showing first 6 and last 4 characters

    Examples:
        >>> mask_address("0x1234567890abcdef1234567890abcdef12345678")
        '0x1234...5678'
        >>> mask_address(None)
        '***'
    """
    if not address or len(address) < 10:
        return "***"
    return f"{address[:6]}...{address[-4:]}"


def mask_url(url: str) -> str:
    """
    Strip path and query from an endpoint URL (they often carry API keys).

    Examples:
        >>> mask_url("https://eth.example.com/v2/SECRET")
        'https://eth.example.com'
    """
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return "***"
    return f"{parsed.scheme}://{parsed.netloc}"


def validate_secure_endpoint(url: str, environment: str = "development") -> bool:
    """
    Check that an RPC endpoint uses a secure transport.

    Args:
        url: Endpoint URL
        environment: Deployment environment name

    Returns:
        True if the endpoint uses HTTPS or WSS

    Raises:
        InsecureEndpointError: Insecure endpoint in production
    """
    scheme = urlparse(url).scheme.lower()
    if scheme in ("https", "wss"):
        return True

    if environment == "production":
        raise InsecureEndpointError(
            f"Insecure RPC endpoint {mask_url(url)} is not allowed in production"
        )

    logger.warning(f"[Security] Insecure RPC endpoint in use: {mask_url(url)}")
    return False
