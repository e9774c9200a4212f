"""
Input validation utilities.
"""

from web3 import Web3


def validate_contract_address(address: str) -> bool:
    """
    Validate an EVM contract address (any letter case).

    Args:
        address: Address string

    Returns:
        True if the string is a 20-byte hex address
    """
    if not address or not isinstance(address, str):
        return False
    if not address.startswith("0x") or len(address) != 42:
        return False
    return Web3.is_address(address.lower())


def normalize_address(address: str) -> str:
    """
    Normalize address to checksum format.

    Args:
        address: Address string

    Returns:
        Checksummed address

    Raises:
        ValueError: If address is invalid
    """
    if not validate_contract_address(address):
        raise ValueError(f"Invalid contract address: {address}")
    return Web3.to_checksum_address(address.lower())


def same_address(left: str | None, right: str | None) -> bool:
    """Compare two addresses case-insensitively."""
    if not left or not right:
        return False
    return left.lower() == right.lower()
