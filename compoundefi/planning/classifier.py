"""Operation type classification from free-text product descriptions.

Recommenders describe products in prose ("Liquid staking (stAPT)",
"USDC supply", "USDC/USDT pool"). The rules below are evaluated in order and
the first rule with a matching keyword wins; anything unmatched is staked.
Keeping the table here, behind one pure function, lets a protocol-declared
mapping replace it later without touching planning or execution.
"""

from typing import Optional, Sequence, Tuple

from compoundefi.planning.base import OperationType

# (keywords, operation type), evaluated top to bottom
CLASSIFICATION_RULES: Sequence[Tuple[Tuple[str, ...], OperationType]] = (
    (("stake", "stapt", "apt"), OperationType.STAKE),
    (("lend", "supply"), OperationType.LEND),
    (("liquidity", "pool", "amm"), OperationType.ADD_LIQUIDITY),
    (("vault", "yield"), OperationType.DEPOSIT),
)

DEFAULT_OPERATION_TYPE = OperationType.STAKE


def classify_operation_type(product: Optional[str]) -> OperationType:
    """Map a product description to an operation type.

    Args:
        product: Free-text product/type description (may be None)

    Returns:
        The first matching OperationType, or STAKE when nothing matches

    Example:
        >>> classify_operation_type("USDC Lending")
        <OperationType.LEND: 'lend'>
        >>> classify_operation_type("USDC/USDT liquidity pool")
        <OperationType.ADD_LIQUIDITY: 'addLiquidity'>
    """
    if not product:
        return DEFAULT_OPERATION_TYPE

    text = product.lower()

    # Exact operation names pass straight through ("addLiquidity", "deposit")
    for op_type in OperationType:
        if text == op_type.value.lower():
            return op_type

    for keywords, op_type in CLASSIFICATION_RULES:
        if any(keyword in text for keyword in keywords):
            return op_type

    return DEFAULT_OPERATION_TYPE
