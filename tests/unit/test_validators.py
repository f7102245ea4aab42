import pytest

from storefront.errors import ValidationError
from storefront.orders.models import CustomerContact
from storefront.utils.validators import validate_contact


def _contact(**overrides):
    data = {"first_name": "Chikondi", "last_name": "Banda", "email": "chikondi@example.com", "phone": "+265991234567"}
    data.update(overrides)
    return CustomerContact(**data)


def test_valid_contact_passes():
    validate_contact(_contact())


@pytest.mark.parametrize("field,value,code,reported", [
    ("first_name", " ", "required", "firstName"),
    ("last_name", "", "required", "lastName"),
    ("email", "", "required", "email"),
    ("email", "pas-un-email", "invalid_email", "email"),
    ("phone", "", "required", "phone"),
])
def test_invalid_contact_reports_field(field, value, code, reported):
    with pytest.raises(ValidationError) as exc:
        validate_contact(_contact(**{field: value}))
    assert exc.value.code == code
    assert exc.value.to_dict()["field"] == reported
