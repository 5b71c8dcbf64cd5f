import re
from rest_framework import serializers

PHONE_PATTERN = r"^0[35789]\d{8}$"


def validate_phone(value):
    """Domestic mobile number, e.g. 0909123456."""
    if not re.match(PHONE_PATTERN, str(value)):
        raise serializers.ValidationError("Invalid phone number (e.g. 0909123456).")
    return value
