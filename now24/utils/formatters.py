"""
Utilidades de formateo.
Valores monetários em centavos exibidos no padrão brasileiro.
"""
from decimal import Decimal, InvalidOperation
from typing import Union


def _group_thousands(integer_part: str) -> str:
    reversed_int = integer_part[::-1]
    groups = [reversed_int[i:i+3] for i in range(0, len(reversed_int), 3)]
    return '.'.join(groups)[::-1]


def money_br(cents: Union[int, str, None]) -> str:
    """
    Formata centavos como moeda brasileira.

    Examples:
        money_br(4900) -> "R$ 49,00"
        money_br(123456) -> "R$ 1.234,56"
        money_br(-300) -> "-R$ 3,00"
        money_br(None) -> "-"
    """
    if cents is None or cents == "":
        return "-"

    try:
        value = Decimal(int(cents)) / 100
    except (InvalidOperation, ValueError, TypeError):
        return "-"

    sign = "-" if value < 0 else ""
    integer_part, decimal_part = f"{abs(value):.2f}".split(".")
    return f"{sign}R$ {_group_thousands(integer_part)},{decimal_part}"
