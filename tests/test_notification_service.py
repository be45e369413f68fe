"""
Tests for customer delivery pushes and rider notifications
"""
import uuid

import httpx
import pytest
from unittest.mock import AsyncMock, patch
from postgrest.exceptions import APIError

from app.schemas.notification_schemas import (
    DeliveryEventType,
    DeliveryPushRequest,
    DeviceTokenRegister,
    NotifyRiderRequest,
    RiderNotificationType,
)
from app.services.notification_service import (
    get_my_device_tokens,
    notify_delivery_event,
    notify_rider,
    register_device_token,
    send_push_notification,
)
from app.utils.errors import (
    CustomerMismatch,
    DeliveryNotFound,
    RiderNotFound,
    Unauthorized,
)


def _push(order, event=DeliveryEventType.ON_WAY, customer_id=None, **extra):
    return DeliveryPushRequest(
        customerId=customer_id or order["customer_id"],
        eventType=event,
        orderId=order["id"],
        **extra,
    )


class TestDeliveryPushAuthorization:
    async def test_customer_may_notify_self(self, fake_db, order_factory):
        order = order_factory()

        result = await notify_delivery_event(_push(order), order["customer_id"], fake_db)

        assert result.success is True
        assert result.pushed is False
        assert result.reason == "not configured"

    async def test_assigned_rider_may_notify(self, fake_db, order_factory, rider_factory):
        rider_user = str(uuid.uuid4())
        rider = rider_factory(user_id=rider_user)
        order = order_factory(rider_id=rider["id"])

        result = await notify_delivery_event(_push(order), rider_user, fake_db)

        assert result.success is True

    async def test_business_owner_may_notify(self, fake_db, order_factory, business_factory):
        owner = str(uuid.uuid4())
        order = order_factory(business=business_factory(owner_user_id=owner))

        result = await notify_delivery_event(_push(order), owner, fake_db)

        assert result.success is True

    async def test_stranger_rejected(self, fake_db, order_factory, rider_factory):
        rider_factory(user_id="unassigned-rider")
        order = order_factory()

        with pytest.raises(Unauthorized) as exc:
            await notify_delivery_event(_push(order), "unassigned-rider", fake_db)

        assert exc.value.status_code == 403
        assert fake_db.rows("notifications") == []

    async def test_customer_mismatch(self, fake_db, order_factory):
        order = order_factory()

        with pytest.raises(CustomerMismatch) as exc:
            await notify_delivery_event(
                _push(order, customer_id=str(uuid.uuid4())), order["customer_id"], fake_db
            )

        assert exc.value.message == "Customer ID mismatch"

    async def test_missing_order(self, fake_db):
        fake_order = {"id": str(uuid.uuid4()), "customer_id": str(uuid.uuid4())}
        with pytest.raises(DeliveryNotFound):
            await notify_delivery_event(_push(fake_order), fake_order["customer_id"], fake_db)

    async def test_rider_request_push(self, fake_db, rider_request_factory):
        request = rider_request_factory()

        result = await notify_delivery_event(
            DeliveryPushRequest(
                customerId=request["customer_id"],
                eventType=DeliveryEventType.DELIVERED,
                riderRequestId=request["id"],
            ),
            request["customer_id"],
            fake_db,
        )

        assert result.success is True
        assert fake_db.rows("notifications")[0]["rider_request_id"] == request["id"]

    def test_exactly_one_delivery_reference(self):
        with pytest.raises(ValueError):
            DeliveryPushRequest(customerId=str(uuid.uuid4()), eventType="on_way")
        with pytest.raises(ValueError):
            DeliveryPushRequest(
                customerId=str(uuid.uuid4()),
                eventType="on_way",
                orderId=str(uuid.uuid4()),
                riderRequestId=str(uuid.uuid4()),
            )


class TestDeliveryPushDelivery:
    async def test_in_app_notification_always_created(self, fake_db, order_factory):
        order = order_factory()

        await notify_delivery_event(
            _push(order, DeliveryEventType.RIDER_ASSIGNED, riderName="Kashif"),
            order["customer_id"],
            fake_db,
        )

        note = fake_db.rows("notifications")[0]
        assert note["user_id"] == order["customer_id"]
        assert note["title"] == "🏍️ Rider Assigned!"
        assert note["message"] == "Kashif has been assigned to your order."
        assert note["order_id"] == order["id"]

    async def test_no_device_tokens(self, fake_db, order_factory, push_configured):
        order = order_factory()

        result = await notify_delivery_event(_push(order), order["customer_id"], fake_db)

        assert result.pushed is False
        assert result.reason == "no device tokens"
        assert len(fake_db.rows("notifications")) == 1

    async def test_push_sent(self, fake_db, order_factory, mock_onesignal):
        order = order_factory()
        fake_db.seed("push_device_tokens", user_id=order["customer_id"], device_token="player-1", platform="android")
        fake_db.seed("push_device_tokens", user_id=order["customer_id"], device_token="player-2", platform="ios")

        result = await notify_delivery_event(
            _push(order, DeliveryEventType.NEARBY), order["customer_id"], fake_db
        )

        assert result.pushed is True
        assert result.recipients == 1

        payload = mock_onesignal.post.call_args.kwargs["json"]
        assert payload["app_id"] == "test-app-id"
        assert payload["include_player_ids"] == ["player-1", "player-2"]
        assert payload["headings"] == {"en": "🏍️ Rider is nearby!"}
        assert payload["data"] == {
            "route": f"/orders?highlight={order['id']}",
            "eventType": "nearby",
            "orderId": order["id"],
            "riderRequestId": None,
        }
        headers = mock_onesignal.post.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Basic test-rest-key"

        log = fake_db.rows("push_notifications")[0]
        assert log["success_count"] == 1
        assert log["failure_count"] == 0
        assert log["sent_by"] == order["customer_id"]

    async def test_provider_rejection_degrades(self, fake_db, order_factory, mock_onesignal):
        order = order_factory()
        fake_db.seed("push_device_tokens", user_id=order["customer_id"], device_token="player-1")
        mock_onesignal.post.return_value.json.return_value = {"errors": ["All included players are not subscribed"]}

        result = await notify_delivery_event(_push(order), order["customer_id"], fake_db)

        assert result.success is True
        assert result.pushed is False
        assert result.reason == "provider error"
        assert fake_db.rows("push_notifications")[0]["failure_count"] == 1

    async def test_log_write_failure_keeps_push_result(self, fake_db, order_factory, mock_onesignal):
        order = order_factory()
        fake_db.seed("push_device_tokens", user_id=order["customer_id"], device_token="player-1")
        fake_db.failures[("push_notifications", "insert")] = APIError(
            {"code": "57014", "message": "canceling statement due to statement timeout"}
        )

        result = await notify_delivery_event(_push(order), order["customer_id"], fake_db)

        assert result.pushed is True
        assert result.recipients == 1
        assert fake_db.rows("push_notifications") == []
        assert len(fake_db.rows("notifications")) == 1


class TestSendPush:
    async def test_not_configured(self):
        result = await send_push_notification(["player-1"], "Title", "Body")
        assert result == {"pushed": False, "recipients": 0, "reason": "not configured"}

    async def test_connection_error(self, push_configured):
        with patch("httpx.AsyncClient") as mock_client:
            instance = AsyncMock()
            instance.post = AsyncMock(side_effect=httpx.ConnectTimeout("timed out"))
            instance.__aenter__ = AsyncMock(return_value=instance)
            instance.__aexit__ = AsyncMock(return_value=None)
            mock_client.return_value = instance

            result = await send_push_notification(["player-1"], "Title", "Body")

        assert result["pushed"] is False
        assert result["reason"] == "provider unavailable"


class TestNotifyRider:
    async def test_new_order_message(self, fake_db, rider_factory, mock_onesignal):
        rider = rider_factory(user_id="rider-user")
        fake_db.seed("push_device_tokens", user_id="rider-user", device_token="rider-device")
        order_id = uuid.uuid4()

        result = await notify_rider(
            NotifyRiderRequest(
                rider_id=rider["id"],
                order_id=order_id,
                pickup_address="Saddar",
                order_total=1250,
            ),
            fake_db,
        )

        assert result.success is True
        payload = mock_onesignal.post.call_args.kwargs["json"]
        assert payload["contents"] == {"en": "You have received a new delivery order from Saddar - Rs 1250"}
        assert payload["priority"] == 10
        assert payload["data"]["route"] == f"/orders/{order_id}"
        assert payload["data"]["type"] == "new_order"

    async def test_urgent_and_custom_text(self, fake_db, rider_factory, mock_onesignal):
        rider = rider_factory(user_id="rider-user")
        fake_db.seed("push_device_tokens", user_id="rider-user", device_token="rider-device")

        await notify_rider(
            NotifyRiderRequest(
                rider_id=rider["id"],
                notification_type=RiderNotificationType.URGENT,
                pickup_address="Clifton",
                custom_body="Customer is waiting outside",
            ),
            fake_db,
        )

        payload = mock_onesignal.post.call_args.kwargs["json"]
        assert payload["headings"] == {"en": "🔴 URGENT: New Order!"}
        assert payload["contents"] == {"en": "Customer is waiting outside"}

    async def test_no_devices(self, fake_db, rider_factory, push_configured):
        rider = rider_factory()

        result = await notify_rider(NotifyRiderRequest(rider_id=rider["id"]), fake_db)

        assert result.success is False
        assert result.error == "No registered devices for this rider"

    async def test_not_configured(self, fake_db, rider_factory):
        rider = rider_factory()

        result = await notify_rider(NotifyRiderRequest(rider_id=rider["id"]), fake_db)

        assert result.success is False
        assert result.error == "Push notifications not configured"

    async def test_unknown_rider(self, fake_db):
        with pytest.raises(RiderNotFound):
            await notify_rider(NotifyRiderRequest(rider_id=uuid.uuid4()), fake_db)


class TestDeviceTokens:
    async def test_register_is_upsert(self, fake_db):
        user_id = uuid.uuid4()
        await register_device_token(DeviceTokenRegister(token="abc", platform="android"), user_id, fake_db)
        await register_device_token(DeviceTokenRegister(token="abc", platform="ios"), user_id, fake_db)

        tokens = await get_my_device_tokens(user_id, fake_db)

        assert len(tokens) == 1
        assert tokens[0].platform == "ios"
