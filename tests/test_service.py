import asyncio

import pytest

from conftest import SCENARIO_XML, envelope, register_xml, voucher_xml
from tally_sales.cache import SalesCache
from tally_sales.errors import ParseError, TransportError, ValidationError, VoucherNotFound
from tally_sales.models import QueryWindow
from tally_sales.service import SalesService, matches_search, total_pages_for


class FakeTally:
    def __init__(self, body=SCENARIO_XML, error=None):
        self.body = body
        self.error = error
        self.calls = []

    def __call__(self, window):
        self.calls.append(window)
        if self.error is not None:
            raise self.error
        return self.body


def _window(**overrides):
    params = dict(from_date="20250401", to_date="20250430", company_name="Acme", page_size=5)
    params.update(overrides)
    return QueryWindow(**params)


def _service(tally, clock=None, **kwargs):
    cache = SalesCache(clock=clock) if clock is not None else SalesCache()
    return SalesService(fetch_raw=tally, cache=cache, **kwargs)


def test_end_to_end_scenario():
    tally = FakeTally()

    async def scenario():
        service = _service(tally, prefetch_radius=0)
        return await service.get_page(_window(), 1)

    result = asyncio.run(scenario())
    assert result.total_count == 2
    assert result.has_more is False
    first = result.vouchers[0]
    assert first.taxable_amount == 300
    assert first.tax.cgst_rate == 9
    assert first.tax.total_tax == 54


def test_second_read_is_served_from_cache():
    tally = FakeTally(register_xml(12))

    async def scenario():
        service = _service(tally, prefetch_radius=0)
        first = await service.get_page(_window(), 2)
        second = await service.get_page(_window(), 2)
        return first, second

    first, second = asyncio.run(scenario())
    assert len(tally.calls) == 1
    assert [v.id for v in first.vouchers] == ["rid-6", "rid-7", "rid-8", "rid-9", "rid-10"]
    assert second.vouchers == first.vouchers
    assert first.has_more is True


def test_one_export_serves_page_and_its_neighbours():
    tally = FakeTally(register_xml(200))
    window = _window(page_size=50)

    async def scenario():
        service = _service(tally, prefetch_radius=3)
        await service.get_page(window, 1)
        await service.drain_prefetch()
        return [await service.get_page(window, p, prefetch=False) for p in (2, 3, 4)]

    pages = asyncio.run(scenario())
    assert len(tally.calls) == 1
    assert [p.vouchers[0].id for p in pages] == ["rid-51", "rid-101", "rid-151"]


def test_prefetch_beyond_stored_pages_shares_one_load():
    tally = FakeTally(register_xml(40))

    async def scenario():
        service = _service(tally, prefetch_radius=2)
        await service.get_page(_window(), 1)
        calls_after_first = len(tally.calls)
        await service.get_page(_window(), 3)
        await service.drain_prefetch()
        return service, calls_after_first

    service, calls_after_first = asyncio.run(scenario())
    assert calls_after_first == 1
    assert len(tally.calls) == 2  # pages 4 and 5 prefetched from a single export
    assert service.cache.pages.is_range_cached(_window(), 1, 7)
    assert service.cache.pages.get_page(_window(), 8) is None
    stats = service.cache_stats()
    assert stats["background_tasks"] == 0
    assert stats["prefetch_windows"] == 0


def test_prefetch_skipped_when_neighbourhood_cached():
    tally = FakeTally(register_xml(8))

    async def scenario():
        service = _service(tally, prefetch_radius=3)
        await service.get_page(_window(), 1)
        await service.get_page(_window(), 2)
        await service.drain_prefetch()
        return service

    service = asyncio.run(scenario())
    assert len(tally.calls) == 1
    assert service.cache_stats()["prefetch_windows"] == 0


def test_prefetch_failure_never_reaches_caller():
    tally = FakeTally(register_xml(40))

    async def scenario():
        service = _service(tally, prefetch_radius=1)
        await service.get_page(_window(), 1)
        tally.error = TransportError("gateway down")
        result = await service.get_page(_window(), 2)
        await service.drain_prefetch()
        return service, result

    service, result = asyncio.run(scenario())
    assert [v.id for v in result.vouchers] == ["rid-6", "rid-7", "rid-8", "rid-9", "rid-10"]
    assert len(tally.calls) == 2
    assert service.cache.pages.get_page(_window(), 3) is None
    assert service.cache_stats()["prefetch_windows"] == 0


def test_search_filter_applies_before_paging():
    tally = FakeTally()

    async def scenario():
        service = _service(tally, prefetch_radius=0)
        return await service.get_page(_window(search_filter="blue"), 1)

    result = asyncio.run(scenario())
    assert [v.voucher_number for v in result.vouchers] == ["TI-2"]
    assert result.total_count == 1


def test_matches_search_checks_items_too():
    tally = FakeTally()

    async def scenario():
        service = _service(tally, prefetch_radius=0)
        return await service.load_vouchers(_window())

    vouchers = asyncio.run(scenario())
    assert matches_search(vouchers[0], "basin")
    assert not matches_search(vouchers[1], "basin")
    assert matches_search(vouchers[1], "")


def test_missing_company_rejected_before_network():
    tally = FakeTally()

    async def scenario():
        service = _service(tally)
        await service.get_page(_window(company_name="  "), 1)

    with pytest.raises(ValidationError):
        asyncio.run(scenario())
    assert tally.calls == []


@pytest.mark.parametrize(
    "overrides",
    [{"from_date": "2025/04/01"}, {"to_date": "20250230"}, {"from_date": "20250501"}],
)
def test_bad_dates_rejected_before_network(overrides):
    tally = FakeTally()

    async def scenario():
        await _service(tally).get_page(_window(**overrides), 1)

    with pytest.raises(ValidationError):
        asyncio.run(scenario())
    assert tally.calls == []


def test_page_must_be_positive():
    async def scenario():
        await _service(FakeTally()).get_page(_window(), 0)

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_transport_and_parse_errors_propagate():
    async def fetch_with(tally):
        await _service(tally).get_page(_window(), 1)

    with pytest.raises(TransportError):
        asyncio.run(fetch_with(FakeTally(error=TransportError("refused"))))
    with pytest.raises(ParseError):
        asyncio.run(fetch_with(FakeTally(body="<ENVELOPE><VOUCHER>")))


def test_statistics_cached_from_page_load(clock):
    tally = FakeTally()

    async def scenario():
        service = _service(tally, clock=clock, prefetch_radius=0)
        await service.get_page(_window(), 1)
        stats = await service.get_statistics(_window(page_size=50, search_filter="anything"))
        return stats

    stats = asyncio.run(scenario())
    assert len(tally.calls) == 1
    assert stats.voucher_count == 2
    assert stats.total_sales == 354 + 1180
    assert stats.total_tax == 54
    assert stats.top_parties[0] == ("Blue Hardware", 1180.0)


def test_invalidate_forces_refetch(clock):
    tally = FakeTally()

    async def scenario():
        service = _service(tally, clock=clock, prefetch_radius=0)
        await service.get_page(_window(), 1)
        removed = service.invalidate("20250401", "20250430", "Acme")
        await service.get_page(_window(), 1)
        return removed

    removed = asyncio.run(scenario())
    assert removed == 2  # the page window and its statistics
    assert len(tally.calls) == 2


def test_explicit_duplicate_requests_both_hit_tally():
    tally = FakeTally()

    async def scenario():
        service = _service(tally, prefetch_radius=0)
        await asyncio.gather(service.get_page(_window(), 1), service.get_page(_window(), 1))

    asyncio.run(scenario())
    assert len(tally.calls) == 2


def test_total_pages_for():
    assert total_pages_for(0, 50) == 1
    assert total_pages_for(50, 50) == 1
    assert total_pages_for(51, 50) == 2


DETAIL_XML = envelope(
    voucher_xml("PF-9", vch_type="Proforma Invoice", remote_id="other-guid"),
    voucher_xml(
        "PF-10",
        vch_type="Proforma Invoice",
        body="""
        <GUID>guid-10</GUID>
        <ALLINVENTORYENTRIES.LIST>
            <STOCKITEMNAME>Angle Valve</STOCKITEMNAME>
            <BILLEDQTY>4 Pcs</BILLEDQTY>
            <AMOUNT>400.00</AMOUNT>
            <RATEDETAILS.LIST><GSTRATEDUTYHEAD>IGST</GSTRATEDUTYHEAD><GSTRATE>18</GSTRATE></RATEDETAILS.LIST>
        </ALLINVENTORYENTRIES.LIST>
        """,
    ),
)


class FakeDetail:
    def __init__(self, body=DETAIL_XML):
        self.body = body
        self.calls = []

    def __call__(self, company_name, guid):
        self.calls.append((company_name, guid))
        return self.body


def test_voucher_lookup_by_guid_ignores_type_filter():
    detail = FakeDetail()

    async def scenario():
        service = _service(FakeTally(), fetch_detail=detail)
        first = await service.get_voucher(" Acme ", "guid-10")
        again = await service.get_voucher("Acme", "guid-10")
        return first, again

    first, again = asyncio.run(scenario())
    assert first.voucher_number == "PF-10"
    assert first.voucher_type == "Proforma Invoice"
    assert first.items[0].igst_rate == 18
    assert first.items[0].total_gst_rate == 18
    assert again == first
    assert detail.calls == [("Acme", "guid-10")]


def test_voucher_lookup_misses_and_bad_input():
    detail = FakeDetail()

    async def lookup(company, guid):
        await _service(FakeTally(), fetch_detail=detail).get_voucher(company, guid)

    with pytest.raises(VoucherNotFound):
        asyncio.run(lookup("Acme", "no-such-guid"))
    with pytest.raises(ValidationError, match="GUID"):
        asyncio.run(lookup("Acme", " "))
    with pytest.raises(ValidationError, match="company"):
        asyncio.run(lookup("", "guid-10"))
    assert detail.calls == [("Acme", "no-such-guid")]
