"""
Human-readable references for orders and payments.

Order numbers look like ``ORD-20260419-K3X9LQ2M``: the UTC date, four random
base-36 characters and the last four base-36 digits of the millisecond clock.
Uniqueness is enforced by the database; callers regenerate on collision.
"""
import secrets
import string
import time

from django.utils import timezone

ALPHABET = string.digits + string.ascii_uppercase


def to_base36(number):
    if number == 0:
        return '0'
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(ALPHABET[rem])
    return ''.join(reversed(digits))


def random_code(length):
    return ''.join(secrets.choice(ALPHABET) for _ in range(length))


def generate_order_number(prefix='ORD'):
    date_str = timezone.now().strftime('%Y%m%d')
    timestamp = to_base36(int(time.time() * 1000))[-4:]
    return f"{prefix}-{date_str}-{random_code(4)}{timestamp}"


def generate_payment_reference():
    timestamp = to_base36(int(time.time() * 1000))
    return f"PAY-{timestamp}-{random_code(6)}"
