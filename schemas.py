import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from amounts import to_cents
from models import LimitKind, LimitPeriod, TransactionStatus, TransactionType


# Alternate request keys accepted for the same logical field. Clients written
# against older payloads send Portuguese or camelCase names; everything past
# this module only sees the canonical (first) name.
FIELD_SYNONYMS: dict[str, tuple[str, ...]] = {
    "amount": ("amount", "value", "valor", "valorLimite"),
    "category_id": ("category_id", "categoryId", "categoriaId", "categoria"),
    "card_id": ("card_id", "cardId", "cartaoId", "cartao"),
    "name": ("name", "nome"),
    "description": ("description", "descricao"),
    "date": ("date", "data"),
    "notes": ("notes", "observacoes"),
}


def _synonyms(field_name: str) -> AliasChoices:
    return AliasChoices(*FIELD_SYNONYMS[field_name])


class AmountMixin(BaseModel):
    amount: Decimal = Field(..., gt=0, validation_alias=_synonyms("amount"))

    @property
    def amount_cents(self) -> int:
        return to_cents(self.amount)


class CategoryIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(
        ..., min_length=1, max_length=100, validation_alias=_synonyms("name")
    )
    type: TransactionType
    color: str = Field(default="#6B7280", pattern=r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")
    icon: str = Field(default="folder", min_length=1, max_length=50)


class CardIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(
        ..., min_length=1, max_length=100, validation_alias=_synonyms("name")
    )
    brand: Optional[str] = Field(default=None, max_length=40)


class TransactionIn(AmountMixin):
    model_config = ConfigDict(populate_by_name=True)

    type: TransactionType
    date: Optional[dt.date] = Field(default=None, validation_alias=_synonyms("date"))
    description: str = Field(
        ..., min_length=1, max_length=500, validation_alias=_synonyms("description")
    )
    category_id: Optional[int] = Field(
        default=None, gt=0, validation_alias=_synonyms("category_id")
    )
    card_id: Optional[int] = Field(
        default=None, gt=0, validation_alias=_synonyms("card_id")
    )
    status: TransactionStatus = TransactionStatus.confirmed


class TransactionStatusIn(BaseModel):
    status: TransactionStatus


class LimitIn(AmountMixin):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(
        ..., min_length=1, max_length=100, validation_alias=_synonyms("name")
    )
    kind: LimitKind
    period: LimitPeriod = LimitPeriod.monthly
    category_id: Optional[int] = Field(
        default=None, gt=0, validation_alias=_synonyms("category_id")
    )
    card_id: Optional[int] = Field(
        default=None, gt=0, validation_alias=_synonyms("card_id")
    )
    active: bool = True
    alert_50: bool = True
    alert_75: bool = True
    alert_90: bool = True
    alert_100: bool = True
    notes: Optional[str] = Field(
        default=None, max_length=500, validation_alias=_synonyms("notes")
    )


class CategoryLimitIn(AmountMixin):
    model_config = ConfigDict(populate_by_name=True)

    category_id: int = Field(..., gt=0, validation_alias=_synonyms("category_id"))
