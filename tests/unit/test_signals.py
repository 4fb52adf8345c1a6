"""Unit tests for signal detectors, scoring and the signal service."""

from datetime import date, datetime, timedelta, timezone

import pytest

from sovereign.models.entities import Entity
from sovereign.models.records import CaseType, DocumentType
from sovereign.models.signals import Signal, SignalStrength, SignalType
from sovereign.signals import (
    DETECTORS,
    EntityContext,
    ProspectScorer,
    active_signals,
    detect,
    load_scorer,
)
from sovereign.signals.detectors import (
    detect_divorce_finalized,
    detect_foreclosure_risk,
    detect_free_and_clear,
    detect_high_value_property,
    detect_insider_sale,
    detect_long_term_ownership,
    detect_mortgage_satisfied,
    detect_pre_retirement,
    detect_recent_inheritance,
    detect_second_home,
    detect_trust_transfer,
)

from fixtures.records import make_court_case, make_document, make_filing, make_property

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
AS_OF = date(2026, 10, 19)


def satisfaction(**overrides):
    fields = {
        "document_number": "2026-004567",
        "document_type": DocumentType.SATISFACTION,
        "recording_date": date(2026, 9, 20),
        "satisfaction_date": date(2026, 9, 18),
        "grantor_name": "FIRST COASTAL BANK",
        "grantee_name": "SMITH JOHN",
    }
    fields.update(overrides)
    return make_document(**fields)


def context(**fields) -> EntityContext:
    entity = fields.pop("entity", None) or Entity(entity_id="ENT-A", canonical_name="John Smith")
    linked = fields.pop("linked", [])
    return EntityContext(
        entity=entity,
        linked_refs={str(record.ref) for record in linked},
        as_of=AS_OF,
        **fields,
    )


def signal(signal_type: SignalType, strength=SignalStrength.VERY_HIGH, **fields) -> Signal:
    return Signal(
        entity_id="ENT-A",
        signal_type=signal_type,
        strength=strength,
        source="test",
        detected_at=fields.pop("detected_at", NOW),
        **fields,
    )


class TestEquityDetectors:
    """Mortgage, free-and-clear and tenure detectors."""

    def test_mortgage_satisfied(self):
        sat = satisfaction()
        ctx = context(properties=[make_property()], documents=[make_document(), sat])

        (found,) = detect_mortgage_satisfied(ctx, [sat], NOW)

        assert found.signal_type == SignalType.MORTGAGE_SATISFIED
        assert found.strength == SignalStrength.VERY_HIGH
        assert found.window_start == date(2026, 10, 18)
        assert found.window_end == date(2026, 12, 17)
        assert found.metadata["lender"] == "FIRST COASTAL BANK"
        assert len(found.evidence) == 3

    def test_satisfaction_without_mortgage(self):
        sat = satisfaction()
        ctx = context(properties=[make_property()], documents=[sat])

        assert detect_mortgage_satisfied(ctx, [sat], NOW) == []

    def test_satisfaction_on_parcel_not_owned(self):
        sat = satisfaction(parcel_id="P-9")
        ctx = context(properties=[make_property()], documents=[make_document(parcel_id="P-9"), sat])

        assert detect_mortgage_satisfied(ctx, [sat], NOW) == []

    def test_only_new_satisfactions_count(self):
        ctx = context(properties=[make_property()], documents=[make_document(), satisfaction()])

        assert detect_mortgage_satisfied(ctx, [make_property()], NOW) == []

    def test_free_and_clear_after_all_satisfied(self):
        ctx = context(properties=[make_property()], documents=[make_document(), satisfaction()])

        (found,) = detect_free_and_clear(ctx, [], NOW)

        assert found.description.startswith("All recorded mortgages satisfied")

    def test_open_mortgage_is_not_free_and_clear(self):
        ctx = context(properties=[make_property()], documents=[make_document()])

        assert detect_free_and_clear(ctx, [], NOW) == []

    def test_old_purchase_without_mortgage(self):
        recent = context(properties=[make_property(last_sale_date=date(2020, 1, 1))])
        old = context(properties=[make_property(last_sale_date=date(2005, 1, 1))])

        assert detect_free_and_clear(recent, [], NOW) == []
        assert len(detect_free_and_clear(old, [], NOW)) == 1

    def test_long_term_ownership(self):
        ctx = context(properties=[make_property(last_sale_date=date(2000, 3, 1))])

        (found,) = detect_long_term_ownership(ctx, [], NOW)

        assert found.metadata["years_owned"] == 26
        assert detect_long_term_ownership(context(properties=[make_property()]), [], NOW) == []


class TestLifeEventDetectors:
    def test_trust_transfer(self):
        deed = make_document(
            document_number="2026-1",
            document_type=DocumentType.DEED,
            grantor_name="SMITH JOHN",
            grantee_name="SMITH FAMILY TRUST",
            lender_name=None,
        )
        ctx = context(properties=[make_property()], documents=[deed])

        (found,) = detect_trust_transfer(ctx, [deed], NOW)

        assert found.strength == SignalStrength.HIGH

    def test_probate_case_needs_link(self):
        case = make_court_case()

        (found,) = detect_recent_inheritance(context(court_cases=[case], linked=[case]), [case], NOW)

        assert found.window_start == date(2026, 10, 30)
        assert detect_recent_inheritance(context(court_cases=[case]), [case], NOW) == []

    def test_deed_from_estate(self):
        deed = make_document(
            document_number="2026-2",
            document_type=DocumentType.DEED,
            grantor_name="DOE JANE ESTATE",
            grantee_name="SMITH JOHN",
            lender_name=None,
        )

        (found,) = detect_recent_inheritance(context(documents=[deed], linked=[deed]), [deed], NOW)

        assert found.signal_type == SignalType.RECENT_INHERITANCE

    def test_divorce_only_when_closed(self):
        open_case = make_court_case(case_number="2026-DR-1", case_type=CaseType.DIVORCE)
        closed = make_court_case(
            case_number="2026-DR-2",
            case_type=CaseType.DIVORCE,
            status="Closed",
            disposition_date=date(2026, 9, 1),
        )
        ctx = context(court_cases=[open_case, closed], linked=[open_case, closed])

        (found,) = detect_divorce_finalized(ctx, [], NOW)

        assert found.metadata["case_number"] == "2026-DR-2"
        assert found.window_start == date(2026, 10, 31)


class TestWealthDetectors:
    def test_second_home(self):
        ctx = context(properties=[make_property(), make_property(parcel_id="P-2002")])

        (found,) = detect_second_home(ctx, [], NOW)

        assert found.metadata["parcel_ids"] == ["P-1001", "P-2002"]
        assert detect_second_home(context(properties=[make_property()]), [], NOW) == []

    @pytest.mark.parametrize("age,expected", [(58, 0), (59, 1), (64, 1), (65, 0)])
    def test_pre_retirement(self, age, expected):
        entity = Entity(entity_id="ENT-A", canonical_name="John Smith", age_estimate=age)

        assert len(detect_pre_retirement(context(entity=entity), [], NOW)) == expected

    def test_insider_sale(self):
        sale = make_filing()
        purchase = make_filing(accession_number="0001234567-26-000002", transaction_type="P")
        ctx = context(professional_records=[sale, purchase], linked=[sale, purchase])

        (found,) = detect_insider_sale(ctx, [], NOW)

        assert found.metadata["company"] == "Oceanic Systems Inc"

    def test_high_value_uses_county_median(self):
        ctx = context(properties=[make_property()])

        assert len(detect_high_value_property(ctx, [], NOW)) == 1
        ctx.demographics = {"median_home_value": 1_500_000}
        assert detect_high_value_property(ctx, [], NOW) == []


class TestDistressDetectors:
    def test_lis_pendens_on_owned_parcel(self):
        notice = make_document(
            document_number="2026-3", document_type=DocumentType.LIS_PENDENS, grantor_name="FIRST COASTAL BANK"
        )

        (found,) = detect_foreclosure_risk(context(properties=[make_property()], documents=[notice]), [], NOW)

        assert found.strength == SignalStrength.LOW

    def test_foreclosure_case_on_owned_parcel(self):
        case = make_court_case(
            case_number="2026-CA-9", case_type=CaseType.FORECLOSURE, related_properties=["P-1001"]
        )

        found = detect_foreclosure_risk(context(properties=[make_property()], court_cases=[case]), [], NOW)

        assert [s.metadata["case_number"] for s in found] == ["2026-CA-9"]


class TestDetect:
    def test_detector_order_does_not_matter(self):
        ctx = context(
            properties=[make_property(), make_property(parcel_id="P-2002")],
            documents=[make_document(), satisfaction()],
        )

        forward = [s.signal_type for d in DETECTORS for s in d(ctx, ctx.all_records, NOW)]
        backward = [s.signal_type for d in reversed(DETECTORS) for s in d(ctx, ctx.all_records, NOW)]

        assert sorted(forward) == sorted(backward)
        assert sorted(s.signal_type for s in detect(ctx, now=NOW)) == sorted(forward)

    def test_signals_carry_entity_and_time(self):
        ctx = context(properties=[make_property()])

        signals = detect(ctx, now=NOW)

        assert signals
        assert all(s.entity_id == "ENT-A" and s.detected_at == NOW for s in signals)


class TestScoring:
    """Weighted, capped aggregation."""

    def test_strength_scales_contribution(self):
        scorer = ProspectScorer()

        assert scorer.contribution(signal(SignalType.HIGH_VALUE_PROPERTY, SignalStrength.MEDIUM)) == 10
        assert scorer.contribution(signal(SignalType.HIGH_VALUE_PROPERTY)) == 15
        assert scorer.contribution(signal(SignalType.MORTGAGE_SATISFIED, weight=0.5)) == 15

    def test_category_cap(self):
        score = ProspectScorer().score(
            "ENT-A",
            [
                signal(SignalType.MORTGAGE_SATISFIED),
                signal(SignalType.FREE_AND_CLEAR),
                signal(SignalType.HIGH_VALUE_PROPERTY, SignalStrength.MEDIUM),
            ],
        )

        assert score.score == 55
        assert score.category_breakdown == {"equity": 45, "wealth": 10}
        assert score.signal_contributions["mortgage_satisfied"] == 30

    def test_total_clipped_to_100(self):
        signals = [
            signal(SignalType.MORTGAGE_SATISFIED),
            signal(SignalType.FREE_AND_CLEAR),
            signal(SignalType.RECENT_INHERITANCE),
            signal(SignalType.DIVORCE_FINALIZED, SignalStrength.HIGH),
            signal(SignalType.INSIDER_SALE),
            signal(SignalType.SECOND_HOME, SignalStrength.HIGH),
        ]

        assert ProspectScorer().score("ENT-A", signals).score == 100

    def test_newer_signal_supersedes_older(self):
        older = signal(SignalType.HIGH_VALUE_PROPERTY, SignalStrength.LOW)
        newer = signal(
            SignalType.HIGH_VALUE_PROPERTY, SignalStrength.MEDIUM, detected_at=NOW + timedelta(days=1)
        )

        assert active_signals([newer, older]) == [newer]
        assert ProspectScorer().score("ENT-A", [older, newer]).score == 10

    def test_score_is_order_independent(self):
        signals = [
            signal(SignalType.FREE_AND_CLEAR),
            signal(SignalType.FORECLOSURE_RISK, SignalStrength.LOW),
            signal(SignalType.PRE_RETIREMENT, SignalStrength.HIGH),
        ]
        scorer = ProspectScorer()

        assert scorer.score("ENT-A", signals).score == scorer.score("ENT-A", signals[::-1]).score

    def test_weights_from_yaml(self, tmp_path):
        path = tmp_path / "weights.yaml"
        path.write_text(
            "weights:\n"
            "  mortgage_satisfied: {base_weight: 40, max_contribution: 40}\n"
            "category_caps:\n"
            "  equity: 50\n",
            encoding="utf-8",
        )

        scorer = load_scorer(str(path))

        assert scorer.score("ENT-A", [signal(SignalType.MORTGAGE_SATISFIED)]).score == 40
        assert scorer.weights[SignalType.FREE_AND_CLEAR].base_weight == 25

    def test_no_signals(self):
        assert ProspectScorer().score("ENT-A", []).score == 0


class TestSignalService:
    """Detection over stored records, deduplication and rescoring."""

    async def _john(self, engine, repository, **overrides):
        record = make_property(**overrides)
        await repository.save(record)
        (outcome,) = await engine.resolve_record(record)
        return outcome.entity_id

    async def test_process_stores_signals_and_score(self, engine, repository, signal_service):
        entity_id = await self._john(engine, repository, last_sale_date=date(2020, 1, 1))

        result = await signal_service.process(entity_id)

        assert [s.signal_type for s in result.new_signals] == [SignalType.HIGH_VALUE_PROPERTY]
        assert result.score.score == 10
        assert result.previous_score is None
        assert (await engine.get_entity(entity_id)).prospect_score == 10

    async def test_repeat_detection_is_deduplicated(self, engine, repository, signal_service):
        entity_id = await self._john(engine, repository)
        first = await signal_service.process(entity_id)

        second = await signal_service.process(entity_id)

        assert first.new_signals
        assert second.new_signals == []
        assert second.previous_score == first.score.score
        assert len(await signal_service.signals_for(entity_id)) == len(first.new_signals)

    async def test_documents_on_owned_parcel_join_context(self, engine, repository, signal_service):
        entity_id = await self._john(engine, repository)
        await repository.save(make_document(grantor_name="SMITH JANE", document_number="2011-9"))

        entity = await engine.get_entity(entity_id)
        ctx = await signal_service.build_context(entity)

        assert [d.document_number for d in ctx.documents] == ["2011-9"]
        assert ctx.linked_refs == {str(make_property().ref)}

    async def test_county_median_from_demographics(self, engine, repository, signal_service):
        await repository.save_demographics("test_beach_fl", {"median_home_value": 2_000_000})
        entity_id = await self._john(engine, repository, last_sale_date=date(2020, 1, 1))

        result = await signal_service.process(entity_id)

        assert result.new_signals == []

    async def test_rescore_uses_stored_signals(self, engine, repository, signal_service):
        entity_id = await self._john(engine, repository, last_sale_date=date(2020, 1, 1))
        processed = await signal_service.process(entity_id)

        rescored = await signal_service.rescore(entity_id)

        assert rescored.score == processed.score.score
