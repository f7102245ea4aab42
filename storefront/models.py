"""
Types partagés par les features (commandes, réservations, paiements).
- CamelModel: sérialise en camelCase (format persisté et échangé avec le front), accepte aussi le snake_case.
- Money: Decimal en interne, nombre en JSON.
"""
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict

from pydantic import BaseModel, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel

Money = Annotated[Decimal, PlainSerializer(lambda v: float(v), return_type=float, when_used="json")]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> Dict[str, Any]:
        """Dict JSON-compatible en camelCase, champs None omis."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class PaymentInfo(CamelModel):
    payment_id: str
    payment_method: str
    paid_at: datetime
    amount: Money
    currency: str
