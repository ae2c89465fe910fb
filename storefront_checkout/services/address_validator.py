"""Delivery address validation - pure checks run before the address step can be left"""

import re
from dataclasses import dataclass, field
from typing import Dict, Any, Mapping, Optional

from ..models.session import CustomerDetails
from ..protocol.errors import ValidationError
from ..utils.logger import get_logger

logger = get_logger(__name__)

NAME_PATTERN = re.compile(r"^[A-Za-z]+(?: [A-Za-z]+)*$")
PHONE_PATTERN = re.compile(r"^[0-9]{10}$")
PINCODE_PATTERN = re.compile(r"^[0-9]{6}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_SEPARATORS = re.compile(r"[\s\-().]")

MIN_ADDRESS_LENGTH = 10
MIN_NAME_LENGTH = 2


@dataclass
class ValidationResult:
    """Outcome of validating a delivery address form"""
    is_valid: bool
    errors: Dict[str, str] = field(default_factory=dict)
    cleaned: Dict[str, Any] = field(default_factory=dict)


def _text(value: Any) -> str:
    if value is None:
        return ''
    return ' '.join(str(value).split())


def normalize_phone(value: Any) -> str:
    """Strip separators and a leading +91 / 91 / 0 prefix from a mobile number"""
    digits = PHONE_SEPARATORS.sub('', str(value or '').strip())
    if digits.startswith('+91'):
        digits = digits[3:]
    elif digits.startswith('91') and len(digits) == 12:
        digits = digits[2:]
    elif digits.startswith('0') and len(digits) == 11:
        digits = digits[1:]
    return digits


class AddressValidator:
    """Validates and normalizes delivery address fields"""

    def validate(self, fields: Mapping[str, Any]) -> ValidationResult:
        """
        Validate a delivery address form

        Every failing field contributes exactly one error keyed by field name.

        Args:
            fields: Raw form values; `mobile` is accepted as an alias of `phone`

        Returns:
            ValidationResult with all collected errors and the cleaned values
        """
        errors: Dict[str, str] = {}

        name = _text(fields.get('name'))
        if not name:
            errors['name'] = "Name is required"
        elif len(name) < MIN_NAME_LENGTH or not NAME_PATTERN.match(name):
            errors['name'] = "Name should contain only letters and spaces"

        raw_phone = fields.get('phone')
        if raw_phone is None or raw_phone == '':
            raw_phone = fields.get('mobile')
        phone = normalize_phone(raw_phone)
        if not phone:
            errors['phone'] = "Mobile number is required"
        elif not PHONE_PATTERN.match(phone):
            errors['phone'] = "Please enter a valid 10-digit mobile number"

        address = _text(fields.get('address'))
        if not address:
            errors['address'] = "Address is required"
        elif len(address) < MIN_ADDRESS_LENGTH:
            errors['address'] = f"Address must be at least {MIN_ADDRESS_LENGTH} characters"

        city = _text(fields.get('city'))
        if not city:
            errors['city'] = "City is required"

        state = _text(fields.get('state'))
        if not state:
            errors['state'] = "State is required"

        pincode = re.sub(r"\s", '', str(fields.get('pincode') or ''))
        if not pincode:
            errors['pincode'] = "Pincode is required"
        elif not PINCODE_PATTERN.match(pincode):
            errors['pincode'] = "Please enter a valid 6-digit pincode"

        email = str(fields.get('email') or '').strip()
        if email and not EMAIL_PATTERN.match(email):
            errors['email'] = "Please enter a valid email address"

        cleaned = {
            'name': name,
            'phone': phone,
            'email': email,
            'address': address,
            'city': city,
            'state': state,
            'pincode': pincode,
            'landmark': _text(fields.get('landmark')) or None,
            'locality': _text(fields.get('locality')) or None,
        }

        if errors:
            logger.debug(f"[AddressValidator] {len(errors)} invalid field(s): {sorted(errors)}")

        return ValidationResult(is_valid=not errors, errors=errors, cleaned=cleaned)

    def to_customer(self, fields: Mapping[str, Any],
                    default_email: Optional[str] = None) -> CustomerDetails:
        """
        Validate and build CustomerDetails

        Raises:
            ValidationError: carrying every invalid field
        """
        result = self.validate(fields)
        if not result.is_valid:
            raise ValidationError(result.errors)

        cleaned = dict(result.cleaned)
        if not cleaned['email'] and default_email:
            cleaned['email'] = default_email
        return CustomerDetails.from_dict(cleaned)


def format_errors(errors: Mapping[str, str]) -> str:
    """Render all field errors as one message"""
    lines = "\n".join(f"• {message}" for message in errors.values())
    return f"Please fix the following errors:\n{lines}"
