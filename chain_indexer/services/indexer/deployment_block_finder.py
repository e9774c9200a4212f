"""
Deployment block finder.

Finds the first block at which a contract has code: an explorer lookup
first, then a binary search over [0, head] with "code exists at b" as the
monotone predicate. A probe that errors counts as "no code", which can
bias the result later than the true deployment block.
"""

from loguru import logger

from chain_indexer.config.constants import MIN_SEARCHABLE_HEAD
from chain_indexer.services.blockchain.explorer_client import ExplorerClient
from chain_indexer.services.indexer.contract_fetcher import ContractFetcher
from chain_indexer.utils.exceptions import TRANSIENT_ERRORS, ContractNotFoundError
from chain_indexer.utils.security import mask_address

EXPLORER_LOOKUP_ERRORS = (*TRANSIENT_ERRORS, ValueError, KeyError, TypeError)


class DeploymentBlockFinder:
    """Resolves and caches contract deployment blocks."""

    def __init__(
        self,
        fetcher: ContractFetcher,
        explorer: ExplorerClient | None = None,
        min_searchable_head: int = MIN_SEARCHABLE_HEAD,
    ) -> None:
        self.fetcher = fetcher
        self.explorer = explorer
        self.min_searchable_head = min_searchable_head
        self._cache: dict[tuple[str, str], int] = {}

    def get_cached(self, chain_id: str, address: str) -> int | None:
        return self._cache.get((chain_id, address.lower()))

    async def find_deployment_block(self, chain_id: str, address: str) -> int:
        """
        Find the deployment block of a contract.

        Args:
            chain_id: Chain identifier
            address: Contract address

        Returns:
            First block with non-empty code

        Raises:
            ContractNotFoundError: If there is no code even at chain head
            RPCError: If the chain head or its code cannot be read
        """
        key = (chain_id, address.lower())
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        block = await self._lookup_explorer(chain_id, address)
        if block is None:
            block = await self.binary_search(chain_id, address)

        self._cache[key] = block
        logger.success(
            f"[DeploymentFinder] {mask_address(address)} on {chain_id} "
            f"deployed at block {block}"
        )
        return block

    async def _lookup_explorer(self, chain_id: str, address: str) -> int | None:
        if self.explorer is None:
            return None
        try:
            return await self.explorer.get_creation_block(chain_id, address)
        except EXPLORER_LOOKUP_ERRORS as e:
            logger.warning(
                f"[DeploymentFinder] Explorer lookup failed for "
                f"{mask_address(address)} on {chain_id}, falling back to search: {e}"
            )
            return None

    async def _has_code(self, chain_id: str, address: str, block: int) -> bool:
        try:
            code = await self.fetcher.get_code(chain_id, address, block)
        except Exception as e:
            logger.warning(
                f"[DeploymentFinder] getCode at {block} failed, treating as absent: {e}"
            )
            return False
        return len(code) > 0

    async def binary_search(self, chain_id: str, address: str) -> int:
        """
        Binary-search the first block with code.

        Returns:
            Deployment block, or 0 when the chain head is below the
            searchable minimum

        Raises:
            ContractNotFoundError: If there is no code at chain head
        """
        head = await self.fetcher.get_block_number(chain_id)

        head_code = await self.fetcher.get_code(chain_id, address, head, retry=True)
        if len(head_code) == 0:
            raise ContractNotFoundError(
                f"No contract code at {mask_address(address)} on {chain_id} "
                f"(head {head})"
            )

        if head < self.min_searchable_head:
            return 0

        low, high = 0, head
        result = head
        probes = 0
        while low <= high:
            mid = (low + high) // 2
            probes += 1
            if await self._has_code(chain_id, address, mid):
                result = mid
                high = mid - 1
            else:
                low = mid + 1

        logger.debug(
            f"[DeploymentFinder] Binary search for {mask_address(address)} "
            f"took {probes} probes"
        )
        return result
