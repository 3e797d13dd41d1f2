"""
Clés d'ordre fractionnaires (base 62).

Une clé est une chaîne de chiffres base 62 lue comme la partie décimale
d'un nombre dans [0, 1): "V" ~ 0.5, "0V" ~ 0.008... Entre deux clés il en
existe toujours une troisième, quitte à allonger la chaîne; on n'a donc
jamais besoin de renuméroter les frères.

Invariant: une clé n'est jamais vide et ne se termine jamais par "0"
(sinon "A" et "A0" désigneraient la même position).
"""

from typing import Optional
from pagetree.core.config import settings
from pagetree.core.errors import OrderKeyExhausted

# ordre ASCII == ordre des chiffres, donc la comparaison de str suffit
BASE_62_DIGITS = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
ZERO = BASE_62_DIGITS[0]


def is_valid_key(key: str) -> bool:
    if not key or key[-1] == ZERO:
        return False
    return all(c in BASE_62_DIGITS for c in key)


def _midpoint(low: str, high: Optional[str]) -> str:
    # low peut être "" (borne 0), high None (borne 1)
    if high is not None:
        # préfixe commun (low est complété par des zéros)
        n = 0
        while n < len(high) and (low[n] if n < len(low) else ZERO) == high[n]:
            n += 1
        if n > 0:
            return high[:n] + _midpoint(low[n:], high[n:])

    digit_low = BASE_62_DIGITS.index(low[0]) if low else 0
    digit_high = BASE_62_DIGITS.index(high[0]) if high is not None else len(BASE_62_DIGITS)

    if digit_high - digit_low > 1:
        return BASE_62_DIGITS[(digit_low + digit_high) // 2]

    # chiffres consécutifs
    if high is not None and len(high) > 1:
        return high[:1]
    return BASE_62_DIGITS[digit_low] + _midpoint(low[1:], None)


def key_between(low_key: Optional[str], high_key: Optional[str]) -> str:
    """Retourne une clé K telle que low_key < K < high_key.

    low_key=None signifie "avant tout", high_key=None "après tout";
    key_between(None, None) donne toujours la même clé médiane.
    """
    if low_key is not None and not is_valid_key(low_key):
        raise OrderKeyExhausted(f"Invalid order key: {low_key!r}")
    if high_key is not None and not is_valid_key(high_key):
        raise OrderKeyExhausted(f"Invalid order key: {high_key!r}")
    if low_key is not None and high_key is not None and low_key >= high_key:
        raise OrderKeyExhausted(f"Order keys out of order: {low_key!r} >= {high_key!r}")

    key = _midpoint(low_key or "", high_key)
    if len(key) > settings.ORDER_KEY_MAX_LENGTH:
        raise OrderKeyExhausted(f"Order key exceeds {settings.ORDER_KEY_MAX_LENGTH} characters")
    return key
