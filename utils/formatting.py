def format_currency(amount: float) -> str:
    """Formats rupiah the Indonesian way: "Rp 45.000"."""
    rounded = round(amount or 0)
    sign = '-' if rounded < 0 else ''
    return f"{sign}Rp {abs(rounded):,}".replace(',', '.')
