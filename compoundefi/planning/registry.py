"""Protocol registry: protocol names to contract addresses and entry points.

The registry is the planner's only source of on-chain coordinates. Lookups
are case-insensitive. Entry points resolve in three steps:

1. Protocol-specific function mapping (e.g. thala stake -> ``::staking::stake_apt``)
2. Generic mapping for the operation type (stake -> ``::staking::stake``)
3. Synthesized default ``<operationType>::execute``
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

from compoundefi.planning.base import OperationType
from compoundefi.utils.logging import get_logger

logger = get_logger(__name__)


# Aptos mainnet contract addresses grouped by protocol category
STAKING_CONTRACTS = {
    "amnis": "0x111ae3e5bc816a5e63c2da97d0aa3886519e0cd5e4b046659fa35796bd11542a",
    "thala": "0xfaf4e633ae9eb31366c9ca24214231760926576c7b625313b3688b5e900731f6",
    "tortuga": "0x952c1b1fc8eb75ee80f432c9d0a84fcda1d5c7481501a7eca9199f1596a60b53",
    "ditto": "0xd11107bdf0d6d7040c6c0bfbdecb6545191fdf13e8d8d259952f53e1713f61b5",
}

LENDING_CONTRACTS = {
    "aries": "0x9770fa9c725cbd97eb50b2be5f7416efdfd1f1554beb0750d4dae4c64e860da3",
    "echelon": "0xf8197c9fa1a397568a47b7a6c5a9b09fa97c8f29f9dcc347232c22e3b24b1f09",
    "echo": "0xeab7ea4d635b6b6add79d5045c4a45d8148d88287b1cfa1c3b6a4b56f46839ed",
    "joule": "0x1ef1320ef4b26367611d6ffa8abd34b04bd479abfa12590af1eac71fdd8731b3",
    "abel": "0x7e783b399436bb5c7e520cefd40d797720cbd117af918fee6f5f2ca50c3a284e",
}

DEX_CONTRACTS = {
    "pancakeswap": "0xc7efb4076dbe143cbcd98cfaaa929ecfc8f299203dfff63b95ccb6bfe19850fa",
    "liquidswap": "0x190d44266241744264b964a37b8f09863167a12d3e70cda39376cfb4e3561e12",
    "cetus": "0x27156bd56eb5637b9adde4d915b596f92d2f28f0ade2eaef48fa73e360e4e8a6",
    "sushi": "0x52cd2babe81b8aa7e5b4958c6bb294b1aaaeec23f711fb71e9aad5bf3f67eab9",
    "aux": "0xbd35135844473187163ca197ca93b2ab014370587bb0ed3befff9e902d6bb541",
}

YIELD_CONTRACTS = {
    "merkle": "0xc0188ad3f42e66b5bd3596e642b8f72749b67d84dafa8348e34014b64175ed5a",
    "fetch": "0x5ae6789dd2fec1a9ec9cccf1a4fecd46af7c5645cdefee965ac7263035724c77",
}

STABLECOIN_CONTRACTS = {
    "thala_stablecoin": "0x7fd500c11216f0fe3095e6c5d88a696c3e585a77d28c37def5b0afc380c3293f",
    "momento": "0xecf044bc5344e3d40e10fca8250a5e927f5a7a8f4abe3a52adf8f215eb9cff9a",
}

OTHER_CONTRACTS = {
    "pontem": "0x8b7311d78d47e37d09435b8dc37c14afd977c5cbc3c4b6506e6e9d0e2d1c7bdb",
    "apt_farm": "0xc84e28b9ed4ca8f7faa28a74b958a8cb7c5d6c1a78edb2d8d74562f7fa7ef8fe",
}

DEFAULT_CONTRACTS: Dict[str, str] = {
    **STAKING_CONTRACTS,
    **LENDING_CONTRACTS,
    **DEX_CONTRACTS,
    **YIELD_CONTRACTS,
    **STABLECOIN_CONTRACTS,
    **OTHER_CONTRACTS,
}

# Protocol-specific function suffixes, keyed by operation type value
FUNCTION_MAPPINGS: Dict[str, Dict[str, str]] = {
    "amnis": {
        "stake": "::staking::stake",
        "unstake": "::staking::unstake",
        "lend": "::lending::supply",
        "withdraw": "::lending::withdraw",
        "addLiquidity": "::router::add_liquidity",
        "removeLiquidity": "::router::remove_liquidity",
    },
    "thala": {
        "stake": "::staking::stake_apt",
        "unstake": "::staking::unstake_apt",
        "lend": "::lending::supply_apt",
        "withdraw": "::lending::withdraw_apt",
        "addLiquidity": "::router::add_liquidity",
        "removeLiquidity": "::router::remove_liquidity",
    },
    "tortuga": {"stake": "::staking::stake_apt", "unstake": "::staking::unstake_apt"},
    "ditto": {"stake": "::staking::stake", "unstake": "::staking::unstake"},
    "echo": {"lend": "::lending::supply", "withdraw": "::lending::withdraw"},
    "aries": {"lend": "::lending::supply", "withdraw": "::lending::withdraw"},
    "echelon": {"lend": "::lending::deposit", "withdraw": "::lending::withdraw"},
    "joule": {"lend": "::lending::deposit", "withdraw": "::lending::withdraw"},
    "abel": {"lend": "::lending::deposit", "withdraw": "::lending::withdraw"},
    "cetus": {
        "addLiquidity": "::pool::add_liquidity",
        "removeLiquidity": "::pool::remove_liquidity",
    },
    "pancakeswap": {
        "addLiquidity": "::router::add_liquidity",
        "removeLiquidity": "::router::remove_liquidity",
    },
    "liquidswap": {
        "addLiquidity": "::router::add_liquidity",
        "removeLiquidity": "::router::remove_liquidity",
    },
    "sushi": {
        "addLiquidity": "::router::add_liquidity",
        "removeLiquidity": "::router::remove_liquidity",
    },
    "aux": {"addLiquidity": "::amm::add_liquidity", "removeLiquidity": "::amm::remove_liquidity"},
    "merkle": {"deposit": "::yield::deposit", "withdraw": "::yield::withdraw"},
    "fetch": {"deposit": "::farming::deposit", "withdraw": "::farming::withdraw"},
    "thala_stablecoin": {"deposit": "::vault::deposit", "withdraw": "::vault::withdraw"},
    "momento": {"deposit": "::vault::mint", "withdraw": "::vault::burn"},
    "pontem": {"addLiquidity": "::dex::add_liquidity", "removeLiquidity": "::dex::remove_liquidity"},
    "apt_farm": {"deposit": "::farm::stake", "withdraw": "::farm::unstake"},
}

# Generic fallback when a protocol has no mapping for an operation type
DEFAULT_FUNCTIONS: Dict[str, str] = {
    "stake": "::staking::stake",
    "unstake": "::staking::unstake",
    "lend": "::lending::supply",
    "withdraw": "::lending::withdraw",
    "addLiquidity": "::router::add_liquidity",
    "removeLiquidity": "::router::remove_liquidity",
    "deposit": "::yield::deposit",
}


class ProtocolRegistry(ABC):
    """Abstract protocol registry.

    Implementations map a protocol name to its contract address and to the
    on-chain function called for each operation type.
    """

    @abstractmethod
    def resolve(self, protocol_name: str) -> Optional[str]:
        """Resolve a protocol name to a contract address.

        Args:
            protocol_name: Protocol name in any case

        Returns:
            Contract address, or None when the protocol is unknown
        """
        pass

    @abstractmethod
    def entry_point(self, protocol_name: str, operation_type: OperationType) -> str:
        """Resolve the on-chain function identifier for an operation.

        Args:
            protocol_name: Protocol name in any case
            operation_type: Operation kind

        Returns:
            Entry point string; never empty
        """
        pass


class StaticProtocolRegistry(ProtocolRegistry):
    """Registry backed by in-memory tables.

    Example:
        >>> registry = StaticProtocolRegistry()
        >>> registry.resolve("Amnis")
        '0x111ae3e5bc816a5e63c2da97d0aa3886519e0cd5e4b046659fa35796bd11542a'
        >>> registry.entry_point("thala", OperationType.STAKE)
        '0xfaf4...31f6::staking::stake_apt'
    """

    def __init__(
        self,
        contracts: Optional[Mapping[str, str]] = None,
        function_mappings: Optional[Mapping[str, Mapping[str, str]]] = None,
        default_functions: Optional[Mapping[str, str]] = None,
    ):
        """Initialize registry tables.

        Args:
            contracts: protocol -> address (defaults to DEFAULT_CONTRACTS)
            function_mappings: protocol -> {operation type -> function}
            default_functions: operation type -> generic function
        """
        source_contracts = DEFAULT_CONTRACTS if contracts is None else contracts
        source_mappings = FUNCTION_MAPPINGS if function_mappings is None else function_mappings

        self.contracts: Dict[str, str] = {k.lower(): v for k, v in source_contracts.items()}
        self.function_mappings: Dict[str, Dict[str, str]] = {
            k.lower(): dict(v) for k, v in source_mappings.items()
        }
        self.default_functions: Dict[str, str] = dict(
            DEFAULT_FUNCTIONS if default_functions is None else default_functions
        )

        logger.debug("StaticProtocolRegistry initialized with %d protocols", len(self.contracts))

    @classmethod
    def from_config(cls, config: Any) -> "StaticProtocolRegistry":
        """Build the default registry extended with protocols from config.

        Reads ``registry.protocols``, a mapping of protocol name to
        ``{address: ..., functions: {operation type: suffix}}``.

        Args:
            config: Config instance (anything with a dotted ``get``)

        Returns:
            StaticProtocolRegistry including the configured protocols
        """
        contracts = dict(DEFAULT_CONTRACTS)
        mappings = {k: dict(v) for k, v in FUNCTION_MAPPINGS.items()}

        for name, entry in (config.get("registry.protocols", {}) or {}).items():
            if not entry or not entry.get("address"):
                logger.warning("Ignoring registry entry %s without address", name)
                continue
            contracts[name] = entry["address"]
            if entry.get("functions"):
                mappings.setdefault(name, {}).update(entry["functions"])

        return cls(contracts=contracts, function_mappings=mappings)

    def register(
        self,
        protocol_name: str,
        address: str,
        functions: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Add or replace a protocol at runtime."""
        key = protocol_name.lower()
        self.contracts[key] = address
        if functions:
            self.function_mappings.setdefault(key, {}).update(functions)

    def resolve(self, protocol_name: str) -> Optional[str]:
        if not protocol_name:
            return None
        return self.contracts.get(protocol_name.strip().lower())

    def entry_point(self, protocol_name: str, operation_type: OperationType) -> str:
        key = (protocol_name or "").strip().lower()
        op_key = operation_type.value

        function = self.function_mappings.get(key, {}).get(op_key)
        if function is None:
            function = self.default_functions.get(op_key)
        if function is None:
            return f"{op_key}::execute"

        # Module-relative suffixes are qualified with the contract address
        if function.startswith("::"):
            address = self.contracts.get(key)
            if address:
                return f"{address}{function}"
        return function

    def __contains__(self, protocol_name: str) -> bool:
        return self.resolve(protocol_name) is not None

    def __len__(self) -> int:
        return len(self.contracts)
