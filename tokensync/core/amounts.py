from decimal import Decimal, localcontext

# uint256 has 78 decimal digits; leave headroom for the fractional part.
_PRECISION = 100


def to_base_units(amount, decimals: int) -> int:
    """Converts a decimal token amount (e.g. "1.5") to integer base units."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return int(Decimal(str(amount)).scaleb(decimals))
