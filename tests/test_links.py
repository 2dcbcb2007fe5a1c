import uuid
from urllib.parse import parse_qs, urlparse

import pytest
from sqlalchemy import func, select

from affiliate_api.core.exceptions import (
    AffiliateNotFound,
    CodeGenerationExhausted,
    Forbidden,
    LinkNotFound,
    NotApproved,
    ProductNotFound,
)
from affiliate_api.models import AffiliateLink, AffiliateStatus
from affiliate_api.services.link_service import LinkService

from conftest import make_affiliate, make_link, make_product


async def count_links(session) -> int:
    return (await session.execute(select(func.count(AffiliateLink.id)))).scalar()


async def test_generate_link_for_approved_affiliate(session):
    affiliate = await make_affiliate(session)
    product = await make_product(session, slug="ro-purifier")

    link = await LinkService(session).generate_link(affiliate.id, product.id)
    await session.commit()

    assert len(link.link_code) == 12
    assert link.link_code.isalnum() and link.link_code == link.link_code.upper()
    assert link.clicks == 0
    assert link.conversions == 0
    assert link.commission_earned == 0
    assert link.is_active is True

    parsed = urlparse(link.original_url)
    assert parsed.netloc == "shop.example.com"
    assert parsed.path == "/store/product/ro-purifier"
    query = parse_qs(parsed.query)
    assert query["ref"] == [affiliate.affiliate_code]
    assert query["product"] == [str(product.id)]


async def test_product_without_slug_uses_id_in_path(session):
    affiliate = await make_affiliate(session)
    product = await make_product(session)

    link = await LinkService(session).generate_link(affiliate.id, product.id)
    assert urlparse(link.original_url).path == f"/store/product/{product.id}"


@pytest.mark.parametrize(
    "status",
    [AffiliateStatus.PENDING, AffiliateStatus.REJECTED, AffiliateStatus.SUSPENDED],
)
async def test_unapproved_affiliate_cannot_generate(session, status):
    affiliate = await make_affiliate(session, status=status)
    product = await make_product(session)

    with pytest.raises(NotApproved):
        await LinkService(session).generate_link(affiliate.id, product.id)
    assert await count_links(session) == 0


async def test_missing_product_or_affiliate(session):
    affiliate = await make_affiliate(session)
    product = await make_product(session)
    service = LinkService(session)

    with pytest.raises(ProductNotFound):
        await service.generate_link(affiliate.id, uuid.uuid4())
    with pytest.raises(AffiliateNotFound):
        await service.generate_link(uuid.uuid4(), product.id)
    assert await count_links(session) == 0


async def test_link_codes_are_distinct(session):
    affiliate = await make_affiliate(session)
    product = await make_product(session)
    service = LinkService(session)

    links = [await service.generate_link(affiliate.id, product.id) for _ in range(25)]
    await session.commit()

    assert len({link.link_code for link in links}) == 25


async def test_code_generation_gives_up_after_bounded_attempts(session, monkeypatch):
    affiliate = await make_affiliate(session)
    product = await make_product(session)
    existing = await make_link(session, affiliate, product)

    service = LinkService(session, max_attempts=3)
    calls = []

    def always_collide():
        calls.append(1)
        return existing.link_code

    monkeypatch.setattr(service, "_new_code", always_collide)

    with pytest.raises(CodeGenerationExhausted):
        await service.generate_link(affiliate.id, product.id)
    assert len(calls) == 3
    assert await count_links(session) == 1


async def test_collision_is_retried(session, monkeypatch):
    affiliate = await make_affiliate(session)
    product = await make_product(session)
    existing = await make_link(session, affiliate, product)

    service = LinkService(session)
    codes = iter([existing.link_code, "FRESHCODE123"])
    monkeypatch.setattr(service, "_new_code", lambda: next(codes))

    link = await service.generate_link(affiliate.id, product.id)
    assert link.link_code == "FRESHCODE123"


async def test_deactivate_link(session):
    owner = await make_affiliate(session)
    other = await make_affiliate(session)
    product = await make_product(session)
    link = await make_link(session, owner, product)
    service = LinkService(session)

    with pytest.raises(Forbidden):
        await service.deactivate_link(other.id, link.id)
    with pytest.raises(LinkNotFound):
        await service.deactivate_link(owner.id, uuid.uuid4())

    updated = await service.deactivate_link(owner.id, link.id)
    await session.commit()
    assert updated.is_active is False

    links = await service.list_links(owner.id)
    assert [l.id for l in links] == [link.id]
