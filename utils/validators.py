import re
from dataclasses import dataclass

from api.exceptions import ValidationFailed
from utils.formatting import format_currency

# Banks the finance team pays out to
BANKS = {
    'BCA': 'Bank Central Asia (BCA)',
    'BNI': 'Bank Negara Indonesia (BNI)',
    'BRI': 'Bank Rakyat Indonesia (BRI)',
    'MDR': 'Bank Mandiri',
    'CIMB': 'CIMB Niaga',
    'DBS': 'DBS Indonesia',
}


@dataclass(frozen=True)
class WithdrawalRequest:
    amount: float
    bank_code: str
    account_number: str
    account_name: str


def is_valid_account_number(account_number: str) -> bool:
    """Digits only, after removing spaces and dashes people type in."""
    cleaned = re.sub(r'[\s-]', '', account_number)
    return cleaned.isdigit() and 6 <= len(cleaned) <= 20


def parse_amount(raw) -> float | None:
    """
    Parses an amount typed by the driver. Accepts numbers and strings such as
    "50000", "50.000" or "Rp 50.000" (dots as thousands separators).
    """
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    if not isinstance(raw, str):
        return None
    cleaned = re.sub(r'(?i)^\s*rp\.?\s*', '', raw).strip()
    if re.fullmatch(r'\d{1,3}(\.\d{3})+', cleaned):
        cleaned = cleaned.replace('.', '')
    cleaned = cleaned.replace(',', '.')
    try:
        return float(cleaned)
    except ValueError:
        return None


def validate_withdrawal(
    amount, bank_code: str, account_number: str, account_name: str,
    *, min_amount: float, available_balance: float,
) -> WithdrawalRequest:
    """
    Checks a withdrawal form before anything is sent to the authority.

    Raises:
        ValidationFailed: naming the first offending field.
    """
    if amount in (None, '') or not bank_code or not account_number or not account_name:
        raise ValidationFailed('form', "Semua field harus diisi!")

    value = parse_amount(amount)
    if value is None or value != value or value <= 0:
        raise ValidationFailed('amount', "Jumlah penarikan harus valid!")
    if value < min_amount:
        raise ValidationFailed('amount', f"Minimal penarikan adalah {format_currency(min_amount)}.")
    if value > available_balance:
        raise ValidationFailed('amount', f"Saldo tidak mencukupi. Saldo tersedia {format_currency(available_balance)}.")

    bank_code = bank_code.strip().upper()
    if bank_code not in BANKS:
        raise ValidationFailed('bank_code', "Bank tidak didukung.")

    if not is_valid_account_number(account_number):
        raise ValidationFailed('account_number', "Nomor rekening hanya boleh berisi angka.")

    account_name = account_name.strip()
    if not account_name:
        raise ValidationFailed('account_name', "Semua field harus diisi!")

    return WithdrawalRequest(
        amount=value,
        bank_code=bank_code,
        account_number=re.sub(r'[\s-]', '', account_number),
        account_name=account_name,
    )
