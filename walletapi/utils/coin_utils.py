"""
코인/루피 변환 유틸리티

플랫폼 가상화폐(코인)와 실제 통화(INR) 사이의 변환, 검증, 표시 포맷을 담당합니다.
상태가 없는 순수 함수만 포함합니다.

환율: 1 루피 = 20 코인 (1 코인 = ₹0.05)
"""

import math
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import Any, Dict, Optional

COINS_PER_RUPEE = 20
MIN_COIN_PRICE = 1
MAX_COIN_PRICE = 2000
MIN_COIN_BALANCE = 0

COIN_ICON = "🪙"
RUPEE_SYMBOL = "₹"

_TWO_PLACES = Decimal("0.01")


def _is_number(value: Any) -> bool:
    """bool은 숫자로 취급하지 않음 (True == 1 방지)"""
    if isinstance(value, bool):
        return False
    if isinstance(value, Decimal):
        return value.is_finite()
    if isinstance(value, (int, float)):
        return not (isinstance(value, float) and (math.isnan(value) or math.isinf(value)))
    return False


def _to_decimal(value: Any) -> Decimal:
    # float은 repr 문자열을 거쳐 이진 오차를 제거 (10.99 * 20 == 219.8)
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def _group_indian(integer_part: int) -> str:
    """인도식 자릿수 구분 (1,00,000 / 12,34,567)"""
    digits = str(abs(integer_part))
    if len(digits) <= 3:
        grouped = digits
    else:
        head, tail = digits[:-3], digits[-3:]
        pairs = []
        while len(head) > 2:
            pairs.insert(0, head[-2:])
            head = head[:-2]
        if head:
            pairs.insert(0, head)
        grouped = ",".join(pairs + [tail])
    return f"-{grouped}" if integer_part < 0 else grouped


# ============================================================================
# Conversion
# ============================================================================


def coins_to_rupees(coins: Any) -> Decimal:
    """코인 -> 루피 (소수점 둘째 자리 반올림, 잘못된 입력은 0)"""
    if not _is_number(coins):
        return Decimal("0.00")
    return (_to_decimal(coins) / COINS_PER_RUPEE).quantize(
        _TWO_PLACES, rounding=ROUND_HALF_UP
    )


def rupees_to_coins(rupees: Any) -> int:
    """루피 -> 코인 (정수 내림, 잘못된 입력은 0)"""
    if not _is_number(rupees):
        return 0
    coins = (_to_decimal(rupees) * COINS_PER_RUPEE).to_integral_value(rounding=ROUND_DOWN)
    return int(coins)


def calculate_total_coins(base_coins: int, bonus_coins: int = 0) -> int:
    return int(base_coins) + int(bonus_coins or 0)


def get_coin_price_range_in_rupees() -> Dict[str, Decimal]:
    return {
        "min": coins_to_rupees(MIN_COIN_PRICE),
        "max": coins_to_rupees(MAX_COIN_PRICE),
    }


def price_per_coin(rupee_price: Any, total_coins: int) -> Decimal:
    """패키지의 코인당 가격 (표시용)"""
    if not _is_number(rupee_price) or not total_coins:
        return Decimal("0.00")
    return (_to_decimal(rupee_price) / total_coins).quantize(
        _TWO_PLACES, rounding=ROUND_HALF_UP
    )


# ============================================================================
# Validation
# ============================================================================


def validate_coin_price(coins: Any) -> bool:
    return _is_number(coins) and MIN_COIN_PRICE <= coins <= MAX_COIN_PRICE


def validate_coin_balance(balance: Any) -> bool:
    return _is_number(balance) and balance >= MIN_COIN_BALANCE


def has_sufficient_coins(balance: Any, required_coins: Any) -> bool:
    if not validate_coin_balance(balance) or not validate_coin_price(required_coins):
        return False
    return balance >= required_coins


# ============================================================================
# Formatting
# ============================================================================


def format_coins(coins: Any, show_label: bool = True, show_icon: bool = False) -> str:
    """코인 표시 문자열

    Examples:
        >>> format_coins(100000)
        '1,00,000 coins'
        >>> format_coins(1000, show_icon=True, show_label=False)
        '🪙 1,000'
    """
    amount = int(coins) if _is_number(coins) else 0
    text = _group_indian(amount)
    if show_label:
        text = f"{text} coins"
    if show_icon:
        text = f"{COIN_ICON} {text}"
    return text


def format_rupees(amount: Any, show_symbol: bool = True) -> str:
    value = _to_decimal(amount) if _is_number(amount) else Decimal("0")
    value = value.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)
    integer_part = int(value)
    fraction = f"{abs(value) % 1:.2f}"[1:]
    text = f"{_group_indian(integer_part)}{fraction}"
    if value < 0 and integer_part == 0:
        text = f"-{text}"
    return f"{RUPEE_SYMBOL}{text}" if show_symbol else text


def format_coins_with_rupees(coins: Any, show_icon: bool = False) -> str:
    return f"{format_coins(coins, show_icon=show_icon)} ({format_rupees(coins_to_rupees(coins))})"


# ============================================================================
# Messages
# ============================================================================


def get_coin_price_error_message(coins: Any) -> Optional[str]:
    """가격 검증 실패 메시지 (유효하면 None)"""
    if not _is_number(coins):
        return "Please enter a valid coin amount"
    if coins < MIN_COIN_PRICE:
        return (
            f"Minimum price is {MIN_COIN_PRICE} coin "
            f"({format_rupees(coins_to_rupees(MIN_COIN_PRICE))})"
        )
    if coins > MAX_COIN_PRICE:
        return (
            f"Maximum price is {format_coins(MAX_COIN_PRICE)} "
            f"({format_rupees(coins_to_rupees(MAX_COIN_PRICE))})"
        )
    return None


def get_insufficient_balance_message(balance: int, required_coins: int) -> str:
    shortfall = max(int(required_coins) - int(balance), 0)
    return f"Insufficient coins. You need {format_coins(shortfall)} more."
