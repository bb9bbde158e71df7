"""
Typed records decoded from the authority's JSON payloads.

The backend has gone through several payload shapes (camelCase from the old
web client, snake_case from the current API, prices nested in a
``distanceOption``).  Every alias and fallback is resolved here, once, so the
rest of the client only ever sees validated, immutable records.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from dateutil import parser
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from api.exceptions import DecodeError


class Role(str, Enum):
    ADMIN = 'admin'
    DRIVER = 'driver'


class OrderStatus(str, Enum):
    PENDING = 'pending'
    ACCEPTED = 'accepted'
    ONGOING = 'ongoing'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class WithdrawalStatus(str, Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    COMPLETED = 'completed'


def _first_present(raw: dict, *keys: str) -> Any:
    """Returns the first value among `keys` that is neither missing, None nor an empty string."""
    for key in keys:
        value = raw.get(key)
        if value is not None and value != '':
            return value
    return None


def _drop_missing(data: dict) -> dict:
    # Missing values must fall through to the field defaults
    return {key: value for key, value in data.items() if value is not None}


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parses a timestamp from the authority. Naive values are taken as UTC,
    which is what the backend stores.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        moment = value
    else:
        moment = parser.parse(str(value))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, extra='ignore')


class Order(_Record):
    id: str
    status: OrderStatus
    driver_id: str | None = None
    order_number: str | None = None
    customer_name: str = 'Customer'
    customer_phone: str | None = None
    pickup_location: str | None = None
    drop_location: str | None = None
    distance_km: float = Field(default=0.0, ge=0)
    price: float = Field(default=0.0, ge=0)
    created_at: datetime | None = None
    accepted_at: datetime | None = None
    completed_at: datetime | None = None

    @model_validator(mode='before')
    @classmethod
    def _normalize(cls, raw: Any) -> Any:
        if not isinstance(raw, dict):
            return raw

        distance_option = _first_present(raw, 'distanceOption', 'distance_option')
        if not isinstance(distance_option, dict):
            distance_option = {}

        price = _first_present(raw, 'price', 'total_amount', 'totalAmount')
        if price is None:
            price = distance_option.get('price')

        drop_location = _first_present(raw, 'drop_location', 'dropLocation', 'destination')
        if drop_location is None:
            drop_location = distance_option.get('destination')

        return _drop_missing({
            'id': _first_present(raw, 'id', 'order_id'),
            'status': raw.get('status'),
            'driver_id': _first_present(raw, 'driver_id', 'driverId'),
            'order_number': _first_present(raw, 'order_number', 'orderNumber'),
            'customer_name': _first_present(raw, 'customer_name', 'customerName'),
            'customer_phone': _first_present(raw, 'customer_phone', 'customerPhone', 'whatsapp_number', 'whatsappNumber'),
            'pickup_location': _first_present(raw, 'pickup_location', 'pickupLocation'),
            'drop_location': drop_location,
            'distance_km': _first_present(raw, 'distance_km', 'distanceKm', 'distance'),
            'price': price,
            'created_at': _first_present(raw, 'created_at', 'createdAt', 'timestamp'),
            'accepted_at': _first_present(raw, 'accepted_at', 'acceptedAt'),
            'completed_at': _first_present(raw, 'completed_at', 'completedAt'),
        })

    @field_validator('id', 'driver_id', 'order_number', 'customer_phone', mode='before')
    @classmethod
    def _as_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(int(value)) if float(value).is_integer() else str(value)
        return value

    @field_validator('status', mode='before')
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator('created_at', 'accepted_at', 'completed_at', mode='before')
    @classmethod
    def _parse_timestamps(cls, value: Any) -> Any:
        return parse_timestamp(value)

    @property
    def label(self) -> str:
        return self.order_number or self.id


class Withdrawal(_Record):
    id: str
    amount: float = Field(ge=0)
    bank_name: str = ''
    account_number: str = ''
    account_name: str = ''
    status: WithdrawalStatus
    created_at: datetime | None = None
    notes: str | None = None

    @field_validator('id', 'account_number', mode='before')
    @classmethod
    def _as_text(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator('status', mode='before')
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator('created_at', mode='before')
    @classmethod
    def _parse_created_at(cls, value: Any) -> Any:
        return parse_timestamp(value)


class UserProfile(_Record):
    id: str
    username: str | None = None
    email: str | None = None
    name: str | None = None
    phone: str | None = None
    role: Role | None = None
    driver_id: str | None = None

    @field_validator('id', 'driver_id', mode='before')
    @classmethod
    def _as_text(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator('role', mode='before')
    @classmethod
    def _known_role(cls, value: Any) -> Any:
        # Roles the client has no surface for (e.g. customer) are treated as unknown
        if isinstance(value, str) and value.strip().lower() in {role.value for role in Role}:
            return value.strip().lower()
        return None

    @property
    def display_name(self) -> str:
        return self.name or self.username or self.email or f"Driver {self.id}"


class LoginResponse(_Record):
    token: str = Field(min_length=1)
    user: UserProfile | None = None


class EarningsPayload(_Record):
    """Server-side aggregates. Every field is optional: older backends omit some of them."""
    total_earnings: float | None = None
    today_earnings: float | None = None
    monthly_earnings: float | None = None
    completed_orders: int | None = None
    today_trips: int | None = None
    monthly_trips: int | None = None
    total_trips: int | None = None


class OnlineStatus(_Record):
    is_online: bool


class Location(_Record):
    """A position fix reported to the authority."""
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    timestamp: datetime


def validate_record(model: type[BaseModel], raw: Any, what: str):
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise DecodeError(f"Malformed {what}: {e.error_count()} invalid field(s)") from e


def decode_order(raw: Any) -> Order:
    return validate_record(Order, raw, 'order record')


def _records(payload: Any, key: str) -> list:
    records = payload.get(key) if isinstance(payload, dict) else payload
    if records is None:
        return []
    if not isinstance(records, list):
        raise DecodeError(f"Expected a list under '{key}'")
    return records


def decode_orders(payload: Any) -> list[Order]:
    """
    Decodes an order list. Individual records that cannot be decoded are logged
    and skipped; the rest of the list is still usable.
    """
    orders = []
    for raw in _records(payload, 'orders'):
        try:
            orders.append(decode_order(raw))
        except DecodeError as e:
            logger.warning(f"Skipping undecodable order record {raw!r}: {e}")
    return orders


def decode_withdrawals(payload: Any) -> list[Withdrawal]:
    withdrawals = []
    for raw in _records(payload, 'withdrawals'):
        try:
            withdrawals.append(validate_record(Withdrawal, raw, 'withdrawal record'))
        except DecodeError as e:
            logger.warning(f"Skipping undecodable withdrawal record {raw!r}: {e}")
    return withdrawals


def decode_profile(payload: Any) -> UserProfile:
    raw = payload.get('user', payload) if isinstance(payload, dict) else payload
    return validate_record(UserProfile, raw, 'profile')


def decode_login(payload: Any) -> LoginResponse:
    if not isinstance(payload, dict) or not payload.get('token'):
        raise DecodeError("No token received from server")
    return validate_record(LoginResponse, payload, 'login response')


def decode_earnings(payload: Any) -> EarningsPayload | None:
    raw = payload.get('earnings') if isinstance(payload, dict) else None
    if not isinstance(raw, dict):
        return None
    return validate_record(EarningsPayload, raw, 'earnings summary')


def decode_online_status(payload: Any) -> bool:
    if isinstance(payload, dict):
        for candidate in (payload, payload.get('location'), payload.get('driver'), payload.get('data')):
            if isinstance(candidate, dict) and candidate.get('is_online') is not None:
                return validate_record(OnlineStatus, candidate, 'online status').is_online
    raise DecodeError("Online status missing from response")
