"""Simulated signer for dry runs.

Accepts every submission instantly and returns a fake transaction hash.
Submissions to addresses listed in ``reject_addresses`` are rejected,
so dry runs can exercise the failure paths.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from compoundefi.execution.base import Signer
from compoundefi.utils.exceptions import OperationFailedError
from compoundefi.utils.logging import get_logger

logger = get_logger(__name__)


class SimulatedSigner(Signer):
    """Signer that never touches a chain.

    Example:
        >>> signer = SimulatedSigner()
        >>> signer.submit("0x1", "0x1::stake::stake", ["60000000000"])
        {'hash': '0x...', 'success': True, ...}
        >>> len(signer.submissions)
        1
    """

    def __init__(
        self,
        connected: bool = True,
        reject_addresses: Optional[Iterable[str]] = None,
    ):
        """Initialize simulated signer.

        Args:
            connected: Value reported by ``is_connected``
            reject_addresses: Contract addresses whose submissions fail
        """
        self.connected = connected
        self.reject_addresses = {a.lower() for a in reject_addresses or []}
        self.submissions: List[Dict[str, Any]] = []

        logger.debug(
            "SimulatedSigner initialized (connected=%s, rejecting %d addresses)",
            connected,
            len(self.reject_addresses),
        )

    @property
    def is_connected(self) -> bool:
        return self.connected

    def submit(
        self,
        contract_address: str,
        entry_point: str,
        args: Sequence[Any],
    ) -> Dict[str, Any]:
        if contract_address.lower() in self.reject_addresses:
            raise OperationFailedError(f"Simulated rejection for {contract_address}")

        tx = {
            "hash": "0x" + uuid.uuid4().hex,
            "success": True,
            "entry_point": entry_point,
            "args": list(args),
            "timestamp": datetime.now().isoformat(),
        }
        self.submissions.append(tx)
        logger.debug("Simulated submission %s -> %s", entry_point, tx["hash"])
        return tx
