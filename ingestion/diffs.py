"""Token balance diffs and two-leg swap pricing."""

from typing import Dict, List, Sequence, Tuple

from .events import BalanceDiff, SwapPriceResult, TokenBalance

WSOL_MINT = "So11111111111111111111111111111111111111112"


class DiffsError(Exception):
    """Base class for diffs that cannot be priced."""
    pass


class NonWsolLegError(DiffsError):
    """Neither leg of the swap is denominated in SOL."""
    pass


class WrongLegCountError(DiffsError):
    """Pricing needs exactly two balance diffs."""
    pass


def get_token_balance_diff(
    pre_balances: Sequence[TokenBalance],
    post_balances: Sequence[TokenBalance],
) -> List[BalanceDiff]:
    """
    Turn pre/post token balances into one diff per (mint, owner).

    A pair seen on only one side counts as 0 on the other. Order follows
    first appearance: pre balances first, then pairs only present post.
    """
    amounts: Dict[Tuple[str, str], List[float]] = {}

    for balance in pre_balances:
        key = (balance.mint, balance.owner)
        amounts.setdefault(key, [0.0, 0.0])[0] += balance.amount

    for balance in post_balances:
        key = (balance.mint, balance.owner)
        amounts.setdefault(key, [0.0, 0.0])[1] += balance.amount

    return [
        BalanceDiff(
            mint=mint,
            owner=owner,
            pre_amount=pre,
            post_amount=post,
            diff=post - pre,
        )
        for (mint, owner), (pre, post) in amounts.items()
    ]


def process_diffs(diffs: Sequence[BalanceDiff], sol_price: float) -> SwapPriceResult:
    """
    Price a two-leg swap using the SOL leg as numeraire.

    Args:
        diffs: Exactly two balance diffs, one of them in wrapped SOL
        sol_price: Current SOL/USD reference price

    Returns:
        SwapPriceResult with USD price per token and USD volume

    Raises:
        WrongLegCountError: If there are not exactly two diffs
        NonWsolLegError: If neither diff is in wrapped SOL
    """
    if len(diffs) != 2:
        raise WrongLegCountError(f"expected exactly two token balance diffs, got {len(diffs)}")

    first, second = diffs
    if first.mint == WSOL_MINT:
        sol_diff, token_diff = first, second
    elif second.mint == WSOL_MINT:
        sol_diff, token_diff = second, first
    else:
        raise NonWsolLegError(f"no SOL leg in swap {first.mint} <-> {second.mint}")

    swap_amount = abs(sol_diff.diff) * sol_price
    price = swap_amount / abs(token_diff.diff)

    return SwapPriceResult(
        price=price,
        swap_amount=swap_amount,
        coin_mint=token_diff.mint,
        # SOL flowing into the observed accounts means the token was bought
        is_buy=sol_diff.diff > 0,
    )


def round_to_decimals(value: float, decimals: int) -> float:
    factor = 10 ** decimals
    return round(value * factor) / factor
