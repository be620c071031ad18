from decimal import Decimal, ROUND_HALF_UP

ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

def D(x) -> Decimal:
    '''
    Coerce DB/JSON values (float, int, str, None) into Decimal without float artefacts
    '''
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x or 0))

def money2(x) -> Decimal:
    return D(x).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

def apply_percentage(amount, percentage) -> Decimal:
    '''
    amount * (1 - percentage / 100), rounded to cents
    '''
    amount = D(amount)
    return money2(amount - (amount * D(percentage) / HUNDRED))
