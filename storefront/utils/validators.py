import re

from storefront.errors import ValidationError

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def validate_contact(contact) -> None:
    """Coordonnées client obligatoires: prénom, nom, email valide, téléphone."""
    if not (contact.first_name or "").strip():
        raise ValidationError("Le prénom est obligatoire", code="required", field="firstName")
    if not (contact.last_name or "").strip():
        raise ValidationError("Le nom est obligatoire", code="required", field="lastName")
    email = (contact.email or "").strip()
    if not email:
        raise ValidationError("L'email est obligatoire", code="required", field="email")
    if not EMAIL_RE.match(email):
        raise ValidationError("Adresse email invalide", code="invalid_email", field="email")
    if not (contact.phone or "").strip():
        raise ValidationError("Le téléphone est obligatoire", code="required", field="phone")
