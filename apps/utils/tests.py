# apps/utils/tests.py
import json
import logging
import uuid

from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from django.core.cache import cache
from django.core.exceptions import PermissionDenied
from django.db import DatabaseError
from django.http import Http404
from django.test import TestCase, RequestFactory
from rest_framework import exceptions

from .exceptions import (
    custom_exception_handler,
    DuplicateRequest,
    InsufficientStock,
    NotFound,
    StoreFailure,
)
from .idempotency import IdempotencyGuard
from .logging import JSONFormatter

User = get_user_model()


class ExceptionHandlerTests(TestCase):
    def test_business_error_keeps_its_status_and_message(self):
        resp = custom_exception_handler(InsufficientStock("Not enough stock for Aspirin"), {})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.data, {"message": "Not enough stock for Aspirin", "code": "insufficient_stock"})

        resp = custom_exception_handler(NotFound("Order not found"), {})
        self.assertEqual(resp.status_code, 404)

    def test_store_failure_is_generic(self):
        resp = custom_exception_handler(StoreFailure(), {})
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.data, {"message": "Server error", "code": "store_error"})

    def test_database_error_is_not_leaked(self):
        with self.assertLogs("apps.utils.exceptions", level="ERROR"):
            resp = custom_exception_handler(DatabaseError("relation orders does not exist"), {})

        self.assertEqual(resp.status_code, 500)
        self.assertNotIn("relation", json.dumps(resp.data))

    def test_unexpected_error_is_server_error(self):
        with self.assertLogs("apps.utils.exceptions", level="ERROR"):
            resp = custom_exception_handler(KeyError("secret_field"), {})

        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.data, {"message": "Server error", "code": "server_error"})

    def test_validation_error_lists_fields(self):
        exc = exceptions.ValidationError({"address": ["This field is required."]})

        resp = custom_exception_handler(exc, {})

        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.data["code"], "validation_failure")
        self.assertIn("address", resp.data["errors"])

    def test_django_errors_are_translated(self):
        self.assertEqual(custom_exception_handler(Http404(), {}).status_code, 404)
        resp = custom_exception_handler(PermissionDenied(), {})
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.data["code"], "permission_denied")


class JSONFormatterTests(TestCase):
    def _record(self, msg, args=None, **extra):
        record = logging.LogRecord("apps.orders", logging.INFO, __file__, 10, msg, args, None)
        for k, v in extra.items():
            setattr(record, k, v)
        return record

    def test_sensitive_args_are_redacted(self):
        record = self._record("ship to %(address)s", ({"address": "12 MG Road"},))

        out = json.loads(JSONFormatter().format(record))

        self.assertEqual(out["msg"], "ship to ***REDACTED***")
        self.assertEqual(out["lvl"], "INFO")
        self.assertTrue(out["ts"].endswith("Z"))

    def test_nested_dict_message_is_scrubbed(self):
        record = self._record({"order": {"contact": "+919876543210", "items": [{"token": "abc"}]}})

        out = JSONFormatter().format(record)

        self.assertNotIn("+919876543210", out)
        self.assertNotIn("abc", out)

    def test_order_and_user_ids_are_attached(self):
        order_id = uuid.uuid4()
        record = self._record("Order placed", order_id=order_id, user_id=7)

        out = json.loads(JSONFormatter().format(record))

        self.assertEqual(out["order_id"], str(order_id))
        self.assertEqual(out["user_id"], 7)


class IdempotencyGuardTests(TestCase):
    def setUp(self):
        cache.clear()
        self.factory = RequestFactory()
        self.user = User.objects.create_user(username="patient", password="testpass123")

    def _request(self, key=None, user=None):
        headers = {"HTTP_IDEMPOTENCY_KEY": key} if key else {}
        request = self.factory.post("/api/v1/orders/place/", **headers)
        request.user = user or self.user
        return request

    def test_without_header_nothing_is_locked(self):
        IdempotencyGuard(self._request(), "place").acquire()
        IdempotencyGuard(self._request(), "place").acquire()

    def test_replay_is_rejected(self):
        IdempotencyGuard(self._request("k-1"), "place").acquire()

        with self.assertRaises(DuplicateRequest):
            IdempotencyGuard(self._request("k-1"), "place").acquire()

    def test_release_allows_retry(self):
        guard = IdempotencyGuard(self._request("k-2"), "place")
        guard.acquire()
        guard.release()

        IdempotencyGuard(self._request("k-2"), "place").acquire()

    def test_keys_are_scoped_per_caller_and_endpoint(self):
        IdempotencyGuard(self._request("k-3"), "place").acquire()

        IdempotencyGuard(self._request("k-3"), "place-by-cart").acquire()
        IdempotencyGuard(self._request("k-3", user=AnonymousUser()), "place").acquire()
