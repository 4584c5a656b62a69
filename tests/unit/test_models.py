"""
models 패키지 단위 테스트

Opportunity 병합 규칙, CrawlState 진행 상태, 실행 기록 모델을 테스트합니다.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError

from philgeps_crawler.models import (
    BatchRecord,
    CrawlHistory,
    CrawlState,
    CrawlStats,
    EnrichmentResult,
    ITBDetails,
    Opportunity,
    RFQDetails,
)
from philgeps_crawler.models.opportunity import merge_non_null


class TestOpportunity:
    """Opportunity 모델 테스트"""

    def test_required_fields(self) -> None:
        with pytest.raises(ValidationError):
            Opportunity(reference_number="", title="Road Repair")
        with pytest.raises(ValidationError):
            Opportunity(reference_number="1", title="")

    def test_budget_conversion(self) -> None:
        """문자열/숫자 금액은 Decimal로 변환"""
        assert Opportunity(reference_number="1", title="A", approved_budget="PHP 1,500.50").approved_budget == Decimal("1500.50")
        assert Opportunity(reference_number="1", title="A", approved_budget=2500).approved_budget == Decimal("2500")
        assert Opportunity(reference_number="1", title="A", approved_budget="N/A").approved_budget is None

    def test_defaults(self) -> None:
        opp = Opportunity(reference_number="1", title="A")
        assert opp.currency == "PHP"
        assert opp.status == "Open"
        assert opp.itb is None and opp.rfq is None

    def test_json_serialization(self, enriched_opportunity: Opportunity) -> None:
        data = enriched_opportunity.model_dump(mode="json")
        assert data["approved_budget"] == "1250000.00"
        assert data["closing_date"] == "2026-10-30T14:00:00"
        assert data["itb"]["solicitation_number"] == "ITB-2026-001"

        restored = Opportunity.model_validate(data)
        assert restored.approved_budget == Decimal("1250000.00")
        assert restored.itb == enriched_opportunity.itb

    def test_is_active(self, sample_opportunity: Opportunity) -> None:
        assert sample_opportunity.is_active(datetime(2026, 10, 29)) is True
        assert sample_opportunity.is_active(datetime(2026, 11, 1)) is False
        assert Opportunity(reference_number="1", title="A").is_active() is True


class TestMergeNonNull:
    """null이 아닌 값 우선 병합 테스트"""

    def test_null_does_not_overwrite(self, sample_opportunity: Opportunity) -> None:
        incoming = Opportunity(reference_number="11223344", title="Updated Title")

        merged = sample_opportunity.merged_with(incoming)

        assert merged.title == "Updated Title"
        assert merged.category == "Information Technology"
        assert merged.approved_budget == Decimal("1250000.00")

    def test_non_null_wins(self, sample_opportunity: Opportunity) -> None:
        incoming = sample_opportunity.model_copy(update={"category": "Construction"})
        assert sample_opportunity.merged_with(incoming).category == "Construction"

    def test_nested_groups_merge_field_by_field(self, enriched_opportunity: Opportunity) -> None:
        """재수집된 ITB의 null 필드는 기존 값을 유지"""
        incoming = Opportunity(
            reference_number="11223344",
            title="Supply and Delivery of Laptops",
            itb=ITBDetails(status="Closed"),
        )

        merged = enriched_opportunity.merged_with(incoming)

        assert merged.itb.status == "Closed"
        assert merged.itb.solicitation_number == "ITB-2026-001"
        assert merged.itb.contact_email == "bac@deped.gov.ph"

    def test_empty_list_does_not_overwrite(self) -> None:
        base = RFQDetails(line_items=["Laptop", "Printer"])
        assert merge_non_null(base, RFQDetails()).line_items == ["Laptop", "Printer"]

    def test_incoming_none(self) -> None:
        base = ITBDetails(status="Open")
        assert merge_non_null(base, None) is base

    def test_original_unchanged(self, sample_opportunity: Opportunity) -> None:
        incoming = sample_opportunity.model_copy(update={"category": "Construction"})
        sample_opportunity.merged_with(incoming)
        assert sample_opportunity.category == "Information Technology"

    def test_with_enrichment(self, sample_opportunity: Opportunity) -> None:
        result = EnrichmentResult(
            itb=ITBDetails(procurement_mode="Public Bidding", approved_budget="PHP 1,000"),
            matched_labels=2,
        )

        enriched = sample_opportunity.with_enrichment(result)

        assert enriched.itb.procurement_mode == "Public Bidding"
        assert enriched.itb.approved_budget == Decimal("1000")
        assert enriched.rfq is None
        assert enriched.title == sample_opportunity.title

    def test_enrichment_fills_budget_and_area(self) -> None:
        """목록에 없던 예산/지역은 ITB 값, 없으면 RFQ 값으로 채움"""
        listing = Opportunity(reference_number="55", title="Road Repair")
        result = EnrichmentResult(
            itb=ITBDetails(approved_budget="PHP 2,500,000.00"),
            rfq=RFQDetails(approved_budget="PHP 9", area_of_delivery="Region VII"),
            matched_labels=3,
        )

        enriched = listing.with_enrichment(result)

        assert enriched.approved_budget == Decimal("2500000.00")
        assert enriched.area_of_delivery == "Region VII"

    def test_enrichment_keeps_listing_budget(self, sample_opportunity: Opportunity) -> None:
        result = EnrichmentResult(
            itb=ITBDetails(approved_budget="PHP 1", area_of_delivery="Cebu"),
            matched_labels=2,
        )

        enriched = sample_opportunity.with_enrichment(result)

        assert enriched.approved_budget == Decimal("1250000.00")
        assert enriched.area_of_delivery == "National Capital Region"

    def test_enrichment_result_empty(self) -> None:
        assert EnrichmentResult().is_empty is True
        assert EnrichmentResult(rfq=RFQDetails(title="RFQ")).is_empty is False


class TestCrawlState:
    """CrawlState 테스트"""

    def test_next_page(self) -> None:
        state = CrawlState(run_id="r", start_page=3)
        assert state.next_page == 3

        state.last_completed_page = 7
        assert state.next_page == 8

    def test_successful_batch_advances(self) -> None:
        state = CrawlState(run_id="r")
        record = BatchRecord(
            start_page=1,
            end_page=10,
            pages_attempted=10,
            pages_successful=9,
            pages_failed=1,
            failed_pages=[5],
            opportunities=180,
        )

        state.record_batch(record)

        assert state.last_completed_page == 10
        assert state.failed_pages == [5]
        assert state.total_opportunities == 180
        assert len(state.batches) == 1

    def test_failed_batch_does_not_advance(self) -> None:
        """모든 페이지가 실패한 배치는 진행 위치를 바꾸지 않음"""
        state = CrawlState(run_id="r", last_completed_page=10)
        record = BatchRecord(
            start_page=11,
            end_page=20,
            pages_attempted=10,
            pages_failed=10,
            failed_pages=list(range(11, 21)),
        )

        state.record_batch(record)

        assert state.last_completed_page == 10
        assert state.failed_pages == []
        assert record.is_successful is False

    def test_failed_pages_not_duplicated(self) -> None:
        state = CrawlState(run_id="r", failed_pages=[5])
        state.record_batch(BatchRecord(start_page=1, end_page=10, pages_successful=9, failed_pages=[5]))
        assert state.failed_pages == [5]

    def test_recover_and_abandon(self) -> None:
        state = CrawlState(run_id="r", failed_pages=[5, 9])

        state.mark_page_recovered(5, opportunities=20)
        state.abandon_page(9, "timeout")

        assert state.failed_pages == []
        assert state.abandoned_pages == [9]
        assert state.total_opportunities == 20
        assert state.last_error == "timeout"

    def test_mark_completed(self) -> None:
        state = CrawlState(run_id="r")
        before = state.last_updated_at - timedelta(seconds=1)
        state.mark_completed()
        assert state.is_completed is True
        assert state.last_updated_at > before


class TestCrawlHistory:
    """실행 통계/이력 테스트"""

    def test_page_range(self) -> None:
        assert CrawlStats().page_range is None
        assert CrawlStats(start_page=1, end_page=10).page_range == "1-10"
        assert CrawlStats(start_page=4).page_range == "4-"

    def test_from_stats(self) -> None:
        stats = CrawlStats(
            found=6,
            new=4,
            updated=2,
            errors=1,
            duration_seconds=12.5,
            start_page=1,
            end_page=3,
            fetch_details=True,
        )

        history = CrawlHistory.from_stats(stats, "failed", "circuit breaker")

        assert history.found == 6
        assert history.new == 4
        assert history.updated == 2
        assert history.status == "failed"
        assert history.error_message == "circuit breaker"
        assert history.page_range == "1-3"
        assert history.fetch_details is True

    def test_invalid_status(self) -> None:
        with pytest.raises(ValidationError):
            CrawlHistory(status="running")  # type: ignore
