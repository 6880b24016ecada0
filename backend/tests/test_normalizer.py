"""Event normalization and reference code parsing tests"""
import json
import pytest
from decimal import Decimal

from docobo.models.enums import PaymentProvider, WebhookEventType
from docobo.services.normalizer import (
    InvalidPayloadError, ReferenceCode, map_polar_event_type, normalize_polar_event,
    normalize_sepay_transaction, parse_reference_code, verify_and_normalize
)
from docobo.services.verification import InvalidSignatureError, UnauthorizedError

from conftest import GUILD_ID, ROLE_ID, USER_ID, polar_body, sepay_payload, sign_polar


@pytest.mark.critical
class TestReferenceCode:
    """Bank-transfer reference grammar"""

    def test_primary_grammar(self):
        assert parse_reference_code("DOCOBO-111-222-333") == ReferenceCode("111", "222", "333")

    def test_primary_grammar_strips_whitespace(self):
        assert parse_reference_code("  DOCOBO-111-222-333\n") == ReferenceCode("111", "222", "333")

    def test_custom_prefix(self):
        assert parse_reference_code("SHOP-1-2-3", prefix="SHOP") == ReferenceCode("1", "2", "3")

    def test_fallback_finds_three_snowflakes_in_order(self):
        text = f"CK {GUILD_ID} chuyen tien {ROLE_ID} cho {USER_ID} FT2413"
        assert parse_reference_code(text) == ReferenceCode(GUILD_ID, ROLE_ID, USER_ID)

    def test_fallback_takes_first_three(self):
        extra = "444444444444444444"
        text = f"{GUILD_ID}.{ROLE_ID}.{USER_ID}.{extra}"
        assert parse_reference_code(text) == ReferenceCode(GUILD_ID, ROLE_ID, USER_ID)

    def test_fallback_accepts_17_and_19_digits(self):
        text = "12345678901234567 1234567890123456789 123456789012345678"
        assert parse_reference_code(text) == ReferenceCode(
            "12345678901234567", "1234567890123456789", "123456789012345678"
        )

    def test_fallback_ignores_runs_outside_snowflake_range(self):
        # 16 and 20 digit runs are not snowflakes
        text = f"1234567890123456 {GUILD_ID} 12345678901234567890 {ROLE_ID}"
        assert parse_reference_code(text) is None

    def test_non_ascii_digits_not_accepted(self):
        fullwidth = "\uff11" * 18
        assert parse_reference_code("DOCOBO-\uff11\uff11\uff11-\uff12\uff12\uff12-\uff13\uff13\uff13") is None
        assert parse_reference_code(f"{fullwidth} {fullwidth} {fullwidth}") is None

    @pytest.mark.parametrize("text", [None, "", "thanks for the role", "DOCOBO-111-222", "DOCOBO-a-b-c"])
    def test_unparseable(self, text):
        assert parse_reference_code(text) is None


@pytest.mark.critical
class TestPolarNormalization:
    """Polar event vocabulary mapping"""

    @pytest.mark.parametrize("raw_type,expected", [
        ("subscription.created", WebhookEventType.SUBSCRIPTION_CREATED),
        ("subscription.updated", WebhookEventType.SUBSCRIPTION_UPDATED),
        ("subscription.active", WebhookEventType.SUBSCRIPTION_ACTIVE),
        ("subscription.canceled", WebhookEventType.SUBSCRIPTION_CANCELED),
        ("subscription.uncanceled", WebhookEventType.SUBSCRIPTION_UNCANCELED),
        ("subscription.revoked", WebhookEventType.SUBSCRIPTION_REVOKED),
        ("order.created", WebhookEventType.ORDER_CREATED),
        ("order.paid", WebhookEventType.ORDER_PAID),
        ("order.refunded", WebhookEventType.ORDER_REFUNDED),
    ])
    def test_known_types(self, raw_type, expected):
        assert map_polar_event_type(raw_type) is expected

    def test_unknown_type_maps_to_updated(self):
        assert map_polar_event_type("checkout.created") is WebhookEventType.SUBSCRIPTION_UPDATED

    def test_subscription_event_uses_data_id(self):
        payload = {"id": "evt_1", "type": "subscription.active", "data": {"id": "sub_1", "status": "active"}}
        event = normalize_polar_event(payload)
        assert event.provider is PaymentProvider.POLAR
        assert event.external_event_id == "evt_1"
        assert event.external_subscription_id == "sub_1"
        assert event.raw_type == "subscription.active"
        assert event.payload == payload

    def test_order_event_prefers_subscription_id(self):
        payload = {"id": "evt_2", "type": "order.refunded", "data": {"id": "ord_1", "subscription_id": "sub_1"}}
        assert normalize_polar_event(payload).external_subscription_id == "sub_1"

    def test_order_event_without_subscription_falls_back_to_order_id(self):
        payload = {"id": "evt_3", "type": "order.refunded", "data": {"id": "ord_1"}}
        assert normalize_polar_event(payload).external_subscription_id == "ord_1"

    @pytest.mark.parametrize("payload", [
        {"type": "subscription.active", "data": {"id": "sub_1"}},
        {"id": "evt_1", "data": {"id": "sub_1"}},
        {"id": "evt_1", "type": "subscription.active"},
        {"id": "evt_1", "type": "subscription.active", "data": {}},
    ])
    def test_malformed_payload_rejected(self, payload):
        with pytest.raises(InvalidPayloadError):
            normalize_polar_event(payload)


@pytest.mark.critical
class TestSepayNormalization:
    """SePay transaction mapping"""

    def test_incoming_transfer(self):
        event = normalize_sepay_transaction(sepay_payload(transaction_id=555, transferAmount=25))
        assert event.provider is PaymentProvider.SEPAY
        assert event.event_type is WebhookEventType.PAYMENT_IN
        assert event.external_event_id == "555"
        assert event.amount == Decimal("25")
        assert event.reference == ReferenceCode(GUILD_ID, ROLE_ID, USER_ID)

    def test_outgoing_transfer_is_ignored(self):
        assert normalize_sepay_transaction(sepay_payload(transferType="out")) is None

    def test_reference_falls_back_to_content(self):
        payload = sepay_payload(referenceCode="FT24207", content=f"chuyen khoan {GUILD_ID} {ROLE_ID} {USER_ID}")
        assert normalize_sepay_transaction(payload).reference == ReferenceCode(GUILD_ID, ROLE_ID, USER_ID)

    def test_unresolvable_reference_is_kept_as_none(self):
        payload = sepay_payload(referenceCode="FT24207", content="hello", code=None, description="")
        event = normalize_sepay_transaction(payload)
        assert event is not None
        assert event.reference is None

    def test_missing_id_rejected(self):
        payload = sepay_payload()
        del payload["id"]
        with pytest.raises(InvalidPayloadError):
            normalize_sepay_transaction(payload)


@pytest.mark.high
class TestVerifyAndNormalize:
    """Combined authenticate-then-normalize entry point"""

    def test_polar_round_trip(self):
        body = polar_body("evt_9", "subscription.revoked", "sub_9")
        event = verify_and_normalize(PaymentProvider.POLAR, body, sign_polar(body))
        assert event.event_type is WebhookEventType.SUBSCRIPTION_REVOKED
        assert event.external_subscription_id == "sub_9"

    def test_polar_bad_signature(self):
        body = polar_body("evt_9", "subscription.revoked", "sub_9")
        headers = sign_polar(body)
        with pytest.raises(InvalidSignatureError):
            verify_and_normalize(PaymentProvider.POLAR, body + b" ", headers)

    def test_polar_signed_garbage_is_invalid_payload(self):
        body = b"not json"
        with pytest.raises(InvalidPayloadError):
            verify_and_normalize(PaymentProvider.POLAR, body, sign_polar(body))

    def test_sepay_round_trip(self):
        body = json.dumps(sepay_payload()).encode()
        event = verify_and_normalize(PaymentProvider.SEPAY, body, {"authorization": "Apikey sepay-test-api-key"})
        assert event.event_type is WebhookEventType.PAYMENT_IN

    def test_sepay_auth_checked_before_parsing(self):
        with pytest.raises(UnauthorizedError):
            verify_and_normalize(PaymentProvider.SEPAY, b"not json", {})
