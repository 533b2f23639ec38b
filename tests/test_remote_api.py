import json

import httpx
import pytest

from pos_sync.core.errors import RemoteError, RemoteTimeoutError
from pos_sync.domain.entities.schemas import EntityKind
from pos_sync.domain.sync.remote import RemoteApi


def _api(handler, **kwargs):
    return RemoteApi("http://pos.test/", transport=httpx.MockTransport(handler), **kwargs)


async def test_create_strips_temporary_id_and_sends_client_ref():
    requests = []

    def handler(request):
        requests.append(request)
        body = json.loads(request.content)
        return httpx.Response(201, json={**body, "id": "srv-42"})

    api = _api(handler, api_key="secret")
    result = await api.create(EntityKind.PRODUCT, {"id": "tmp-1", "name": "Tea", "price": "50"})
    await api.close()

    sent = json.loads(requests[0].content)
    assert requests[0].method == "POST"
    assert requests[0].url.path == "/api/products"
    assert requests[0].headers["Authorization"] == "Bearer secret"
    assert "id" not in sent
    assert sent["client_ref"] == "tmp-1"
    assert result["id"] == "srv-42"


async def test_update_and_list_paths():
    def handler(request):
        if request.method == "PATCH":
            assert request.url.path == "/api/customers/srv-7"
            return httpx.Response(200, json={"id": "srv-7", **json.loads(request.content)})
        assert request.url.path == "/api/customers"
        assert request.url.params["company_id"] == "c1"
        return httpx.Response(200, json=[{"id": "srv-7"}])

    api = _api(handler)
    assert (await api.update(EntityKind.CUSTOMER, "srv-7", {"phone": "1"}))["phone"] == "1"
    assert await api.list(EntityKind.CUSTOMER, "c1") == [{"id": "srv-7"}]
    await api.close()


async def test_error_status_raises_remote_error():
    api = _api(lambda request: httpx.Response(409, text="duplicate receipt"))

    with pytest.raises(RemoteError) as exc_info:
        await api.create(EntityKind.TRANSACTION, {"id": "tmp-1"})
    await api.close()

    assert exc_info.value.status_code == 409
    assert "duplicate receipt" in str(exc_info.value)


async def test_delete_of_missing_entity_counts_as_done():
    api = _api(lambda request: httpx.Response(404))

    assert await api.delete(EntityKind.PRODUCT, "srv-1") is True
    await api.close()


async def test_transport_errors_are_wrapped():
    def timeout(request):
        raise httpx.ReadTimeout("slow", request=request)

    def refused(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(RemoteTimeoutError):
        await _api(timeout).update(EntityKind.PRODUCT, "srv-1", {})
    with pytest.raises(RemoteError):
        await _api(refused).list(EntityKind.PRODUCT, "c1")


async def test_health_check_reports_reachability():
    healthy = _api(lambda request: httpx.Response(200, json={"status": "ok"}))
    down = _api(lambda request: httpx.Response(503))

    assert await healthy.health_check() is True
    assert await down.health_check() is False
