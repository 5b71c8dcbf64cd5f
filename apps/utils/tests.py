# apps/utils/tests.py
import json
import logging

from django.test import TestCase
from rest_framework import exceptions as drf_exceptions
from rest_framework.exceptions import ValidationError

from .exceptions import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    custom_exception_handler,
)
from .logging import JSONFormatter
from .utils import generate_code
from .validators import validate_phone


class ValidatorTests(TestCase):
    def test_phone_validator(self):
        self.assertEqual(validate_phone("0909123456"), "0909123456")
        for bad in ("123", "0109123456", "09091234567", "+84909123456"):
            with self.assertRaises(ValidationError):
                validate_phone(bad)

    def test_generate_code(self):
        code = generate_code("DH")
        self.assertTrue(code.startswith("DH"))
        self.assertEqual(len(code), 10)
        self.assertEqual(code, code.upper())


class ExceptionHandlerTests(TestCase):
    def test_business_errors_map_to_envelope(self):
        response = custom_exception_handler(NotFoundError("Order not found."), {})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data, {"success": False, "message": "Order not found.", "code": "not_found"})

        response = custom_exception_handler(ConflictError("Busy"), {})
        self.assertEqual(response.status_code, 409)

    def test_insufficient_stock_message(self):
        class Product:
            pk = "p1"
            name = "Tea"

        exc = InsufficientStockError(Product(), 5, 2)
        self.assertEqual(exc.message, 'Insufficient stock for "Tea". Requested: 5, Available: 2')
        self.assertEqual(exc.status_code, 409)

    def test_drf_validation_error_keeps_field_errors(self):
        exc = drf_exceptions.ValidationError({"shippingPhone": ["Invalid phone number."]})
        response = custom_exception_handler(exc, {})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.data["success"])
        self.assertEqual(response.data["message"], "shippingPhone: Invalid phone number.")
        self.assertIn("shippingPhone", response.data["errors"])

    def test_unknown_exception_is_generic_500(self):
        with self.assertLogs("apps.utils.exceptions", level="ERROR"):
            response = custom_exception_handler(RuntimeError("boom"), {})
        self.assertEqual(response.status_code, 500)
        self.assertNotIn("boom", response.data["message"])


class JSONFormatterTests(TestCase):
    def test_scrubs_sensitive_keys_and_keeps_context(self):
        record = logging.LogRecord("apps.payments", logging.INFO, __file__, 1, "x", None, None)
        record.msg = {"apikey": "secret", "nested": {"password": "p"}, "amount": 10}
        record.order_id = "abc"

        data = json.loads(JSONFormatter().format(record))
        self.assertIn("***REDACTED***", data["msg"])
        self.assertNotIn("secret", data["msg"])
        self.assertEqual(data["order_id"], "abc")


class HealthCheckTests(TestCase):
    def test_health(self):
        response = self.client.get("/api/v1/utils/health/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["components"]["db"], "ok")

    def test_global_config(self):
        response = self.client.get("/api/v1/utils/config/")
        self.assertEqual(response.status_code, 200)
        self.assertIn("gateway", response.json()["data"]["paymentMethods"])
