"""Tests for product-code resolution (mocked HTTP)."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from goodfood.scanner.config import load_config
from goodfood.scanner.db import CatalogDB, UsageQuota
from goodfood.scanner.db.usage import LOOKUP
from goodfood.scanner.errors import ServiceError
from goodfood.scanner.models import (
    LimitReached,
    LookupHit,
    LookupMiss,
    Provenance,
    ResolvedProduct,
)
from goodfood.scanner.resolution import (
    CodeResolutionClient,
    ProductService,
    create_product_service,
)
from goodfood.scanner.resolution.http import HttpProductService
from goodfood.scanner.resolution.local import LocalProductService

CODE = "8850999320011"


def _service(handler) -> HttpProductService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpProductService(base_url="http://goodfood.test/", client=client)


def _product(**overrides):
    fields = dict(
        code=CODE,
        name="Green tea",
        calories=90,
        protein=0,
        carbs=22,
        fat=0,
        provenance=Provenance.PUBLIC_DATABASE,
    )
    fields.update(overrides)
    return ResolvedProduct(**fields)


class TestHttpProductService:
    @pytest.mark.asyncio
    async def test_catalog_hit(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={
                "success": True,
                "source": "database",
                "data": {"name": "Green tea", "calories": 90, "carbs": 22, "servingSize": 380},
            })

        outcome = await _service(handler).lookup(CODE, "member-1")

        assert isinstance(outcome, LookupHit)
        assert outcome.product.provenance is Provenance.CATALOG
        assert outcome.product.code == CODE
        assert outcome.product.serving_size == 380
        assert requests[0].url.path == f"/api/barcode/{CODE}"
        assert requests[0].url.params["userId"] == "member-1"

    @pytest.mark.asyncio
    async def test_public_database_hit(self):
        def handler(request):
            return httpx.Response(200, json={
                "success": True,
                "source": "openfoodfacts",
                "data": {"name": "Chips", "calories": 150},
            })

        outcome = await _service(handler).lookup(CODE)
        assert outcome.product.provenance is Provenance.PUBLIC_DATABASE

    @pytest.mark.asyncio
    async def test_anonymous_lookup_has_no_user_param(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(404, json={"success": False})

        await _service(handler).lookup(CODE)
        assert "userId" not in seen[0].url.params

    @pytest.mark.asyncio
    async def test_not_found(self):
        def handler(request):
            return httpx.Response(404, json={
                "success": False, "message": "Product not found",
            })

        outcome = await _service(handler).lookup(CODE)
        assert isinstance(outcome, LookupMiss)
        assert outcome.reason == "not_found"
        assert outcome.message == "Product not found"

    @pytest.mark.asyncio
    async def test_limit_reached(self):
        def handler(request):
            return httpx.Response(429, json={
                "success": False, "limitReached": True, "limitCount": 3, "usedCount": 3,
            })

        outcome = await _service(handler).lookup(CODE, "member-1")
        assert outcome == LimitReached(limit=3, used=3, kind="lookup")

    @pytest.mark.asyncio
    async def test_server_error_raises(self):
        def handler(request):
            return httpx.Response(500, json={"error": "database down"})

        with pytest.raises(ServiceError, match="database down") as exc_info:
            await _service(handler).lookup(CODE)
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>oops</html>")

        with pytest.raises(ServiceError, match="invalid JSON"):
            await _service(handler).lookup(CODE)

    @pytest.mark.asyncio
    async def test_persist_posts_product(self):
        bodies = []

        def handler(request):
            bodies.append((request.method, request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={"success": True, "action": "created"})

        await _service(handler).persist(
            _product(provenance=Provenance.AI_ESTIMATE, confidence=80), "member-1"
        )

        method, path, body = bodies[0]
        assert method == "POST"
        assert path == f"/api/barcode/{CODE}"
        assert body["memberId"] == "member-1"
        assert body["source"] == "ai_analysis"
        assert body["name"] == "Green tea"

    @pytest.mark.asyncio
    async def test_persist_failure_raises(self):
        def handler(request):
            return httpx.Response(400, json={"error": "Name is required"})

        with pytest.raises(ServiceError, match="Name is required"):
            await _service(handler).persist(_product())


class TestCodeResolutionClient:
    @pytest.mark.asyncio
    async def test_passes_outcome_through(self):
        service = AsyncMock(spec=ProductService)
        service.lookup.return_value = LookupHit(product=_product())

        outcome = await CodeResolutionClient(service).resolve(CODE, "u1")
        assert isinstance(outcome, LookupHit)
        service.lookup.assert_awaited_once_with(CODE, "u1")

    @pytest.mark.asyncio
    async def test_network_error_becomes_error_miss(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        outcome = await CodeResolutionClient(_service(handler)).resolve(CODE)
        assert isinstance(outcome, LookupMiss)
        assert outcome.reason == "error"
        assert "connection refused" in outcome.message

    @pytest.mark.asyncio
    async def test_service_error_becomes_error_miss(self):
        def handler(request):
            return httpx.Response(503, json={"error": "unavailable"})

        outcome = await CodeResolutionClient(_service(handler)).resolve(CODE)
        assert outcome.reason == "error"

    @pytest.mark.asyncio
    async def test_persist_failure_is_reported_not_raised(self):
        service = AsyncMock(spec=ProductService)
        service.persist.side_effect = ServiceError("write failed", 500)

        assert await CodeResolutionClient(service).persist(_product()) is False

    @pytest.mark.asyncio
    async def test_persist_success(self):
        service = AsyncMock(spec=ProductService)
        assert await CodeResolutionClient(service).persist(_product(), "u1") is True
        service.persist.assert_awaited_once()


@pytest.fixture
def local_parts(tmp_path):
    catalog = CatalogDB(tmp_path / "test.db")
    quota = UsageQuota(tmp_path / "test.db", limits={LOOKUP: 2})
    off = AsyncMock()
    off.fetch.return_value = None
    yield catalog, quota, off
    catalog.close()
    quota.close()


class TestLocalProductService:
    @pytest.mark.asyncio
    async def test_catalog_first(self, local_parts):
        catalog, quota, off = local_parts
        catalog.upsert(_product())
        service = LocalProductService(catalog, off, quota)

        outcome = await service.lookup(CODE, "u1")

        assert isinstance(outcome, LookupHit)
        assert outcome.product.provenance is Provenance.CATALOG
        off.fetch.assert_not_awaited()
        assert catalog.get_row(CODE)["scan_count"] == 1
        assert quota.used("u1", LOOKUP) == 1

    @pytest.mark.asyncio
    async def test_falls_back_to_open_food_facts(self, local_parts):
        catalog, quota, off = local_parts
        off.fetch.return_value = _product()
        service = LocalProductService(catalog, off, quota)

        outcome = await service.lookup(CODE, "u1")

        assert outcome.product.provenance is Provenance.PUBLIC_DATABASE
        off.fetch.assert_awaited_once_with(CODE)
        # not written to the catalog until the user confirms
        assert catalog.get(CODE) is None

    @pytest.mark.asyncio
    async def test_miss_is_not_counted(self, local_parts):
        catalog, quota, off = local_parts
        service = LocalProductService(catalog, off, quota)

        outcome = await service.lookup(CODE, "u1")

        assert isinstance(outcome, LookupMiss)
        assert outcome.reason == "not_found"
        assert quota.used("u1", LOOKUP) == 0

    @pytest.mark.asyncio
    async def test_open_food_facts_failure_is_a_miss(self, local_parts):
        catalog, quota, off = local_parts
        off.fetch.side_effect = httpx.ConnectTimeout("timed out")
        service = LocalProductService(catalog, off, quota)

        outcome = await service.lookup(CODE)
        assert isinstance(outcome, LookupMiss)

    @pytest.mark.asyncio
    async def test_limit_reached(self, local_parts):
        catalog, quota, off = local_parts
        quota.record("u1", LOOKUP)
        quota.record("u1", LOOKUP)
        catalog.upsert(_product())
        service = LocalProductService(catalog, off, quota)

        outcome = await service.lookup(CODE, "u1")

        assert outcome == LimitReached(limit=2, used=2, kind="lookup")
        assert catalog.get_row(CODE)["scan_count"] == 0

    @pytest.mark.asyncio
    async def test_persist_upserts(self, local_parts):
        catalog, quota, off = local_parts
        service = LocalProductService(catalog, off, quota)

        await service.persist(_product(), "u1")

        assert catalog.get(CODE).name == "Green tea"
        assert catalog.get_row(CODE)["created_by"] == "u1"


class TestCreateProductService:
    def test_http_default(self):
        config = load_config()
        assert isinstance(create_product_service(config), HttpProductService)

    def test_local(self, tmp_path):
        config = load_config()
        config.service.backend = "local"
        config.database.path = str(tmp_path / "test.db")
        assert isinstance(create_product_service(config), LocalProductService)

    def test_unknown(self):
        config = load_config()
        config.service.backend = "carrier-pigeon"
        with pytest.raises(ValueError, match="unknown product service backend"):
            create_product_service(config)
