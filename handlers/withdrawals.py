from dataclasses import dataclass

from loguru import logger

from api.client import PedicabAPI
from api.exceptions import PedicabAPIError, ValidationFailed
from api.schemas import Withdrawal
from config.config import MIN_WITHDRAWAL_AMOUNT
from handlers.earnings import EarningsAggregator
from handlers.session_store import SessionStore
from handlers.shared_state import DriverStateStore
from utils.formatting import format_currency
from utils.validators import validate_withdrawal

SUBMIT_FAILED_MESSAGE = "Gagal mengajukan penarikan. Silakan coba lagi."
NO_SESSION_MESSAGE = "Sesi tidak aktif. Silakan login kembali."


@dataclass(frozen=True)
class WithdrawalResult:
    ok: bool
    message: str
    field: str | None = None
    withdrawal: Withdrawal | None = None


class WithdrawalService:
    """Validates and submits withdrawal requests. Input errors never reach the network."""

    def __init__(
        self,
        api: PedicabAPI,
        sessions: SessionStore,
        store: DriverStateStore,
        earnings: EarningsAggregator,
        min_amount: float = MIN_WITHDRAWAL_AMOUNT,
    ):
        self._api = api
        self._sessions = sessions
        self._store = store
        self._earnings = earnings
        self._min_amount = min_amount

    async def submit(self, amount, bank_code: str, account_number: str, account_name: str) -> WithdrawalResult:
        session = self._sessions.session
        if session is None or not session.is_driver:
            return WithdrawalResult(ok=False, message=NO_SESSION_MESSAGE)

        try:
            request = validate_withdrawal(
                amount, bank_code, account_number, account_name,
                min_amount=self._min_amount,
                available_balance=self._store.state.earnings.available_balance,
            )
        except ValidationFailed as e:
            logger.info(f"Withdrawal form rejected on '{e.field}': {e.message}")
            return WithdrawalResult(ok=False, message=e.message, field=e.field)

        try:
            withdrawal = await self._api.create_withdrawal(
                amount=request.amount,
                bank_name=request.bank_code,
                account_number=request.account_number,
                account_name=request.account_name,
                notes=f"Penarikan ke {request.bank_code}",
            )
        except PedicabAPIError as e:
            logger.error(f"Withdrawal of {format_currency(request.amount)} failed: {e}")
            return WithdrawalResult(ok=False, message=SUBMIT_FAILED_MESSAGE)

        logger.info(f"Withdrawal of {format_currency(request.amount)} to {request.bank_code} submitted")
        await self._earnings.refresh_withdrawals()
        self._earnings.recompute()
        return WithdrawalResult(
            ok=True,
            message=f"Permintaan penarikan {format_currency(request.amount)} berhasil diajukan.",
            withdrawal=withdrawal,
        )
