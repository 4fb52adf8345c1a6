"""Unit tests for match layers and the resolution engine."""

import asyncio

import pytest
import pytest_asyncio

from sovereign.errors import EntityNotFound, MergeNotAllowed, ResolutionError, ReviewItemNotFound
from sovereign.models.entities import ReviewStatus
from sovereign.models.records import MentionRole, PartyMention, RecordRef, RecordTable
from sovereign.resolution import (
    ConfidencePolicy,
    EntityCandidate,
    Identity,
    MatchLayer,
    MergeResult,
    OutcomeKind,
    ParsedName,
    ResolutionEngine,
    parse_names,
    review_score,
    run_cascade,
)
from sovereign.sources.skip_trace import SkipTraceEmail, SkipTracePhone, SkipTraceResult
from sovereign.store import MemoryStore

from fixtures.records import JURISDICTION_ID, make_court_case, make_document, make_property

JOHN = ParsedName(first="JOHN", last="SMITH")
ROBERT = ParsedName(first="ROBERT", last="SMITH")
OCEAN_KEY = "123 OCEAN BLVD||33480"
OCEAN_STREET_ZIP = "123 OCEAN BLVD|33480"


def identity(raw: str, **fields) -> Identity:
    mention = PartyMention(
        ref=RecordRef(table=RecordTable.DOCUMENTS, jurisdiction=JURISDICTION_ID, natural_key="DOC-1"),
        slot=0,
        raw_name=raw,
        role=MentionRole.GRANTOR,
        **fields,
    )
    return Identity.from_mention(mention, 0, parse_names(raw, mention.name_order)[0])


def candidate(entity_id: str = "ENT-A", names=(JOHN,), **fields) -> EntityCandidate:
    return EntityCandidate(entity_id=entity_id, names=list(names), **fields)


class TestLayers:
    """Each layer in isolation, through the cascade."""

    def test_exact_name_and_address(self):
        match = run_cascade(
            identity("SMITH JOHN", address="123 Ocean Blvd", zip_code="33480"),
            [candidate(address_keys={OCEAN_KEY}, street_zip_keys={OCEAN_STREET_ZIP})],
        )

        assert match.layer == MatchLayer.EXACT
        assert match.confidence == 0.99

    def test_same_street_other_unit(self):
        match = run_cascade(
            identity("SMITH JOHN", address="123 Ocean Blvd Apt 2", zip_code="33480"),
            [candidate(address_keys={OCEAN_KEY}, street_zip_keys={OCEAN_STREET_ZIP})],
        )

        assert match.layer == MatchLayer.NAME_ZIP
        assert match.confidence == 0.95

    def test_records_chain_needs_compatible_name(self):
        chained = candidate(parcel_ids={"P-1001"})
        stranger = candidate("ENT-B", names=[ParsedName(first="MARY", last="SMITH")], parcel_ids={"P-1001"})

        match = run_cascade(identity("SMITH J", parcel_ids=("P-1001",)), [chained, stranger])

        assert match.layer == MatchLayer.RECORDS_CHAIN
        assert match.entity_id == "ENT-A"
        assert not match.is_ambiguous

    def test_fuzzy_name_with_initial(self):
        match = run_cascade(
            identity("J. Smith", address="123 Ocean Blvd", zip_code="33480"),
            [candidate(address_keys={OCEAN_KEY})],
        )

        assert match.layer == MatchLayer.FUZZY
        assert match.confidence == 0.92

    def test_fuzzy_name_typo(self):
        match = run_cascade(
            identity("SMYTH JOHN", address="123 Ocean Blvd", zip_code="33480"),
            [candidate(address_keys={OCEAN_KEY})],
        )

        assert match.layer == MatchLayer.FUZZY

    def test_nickname_with_shared_phone(self):
        match = run_cascade(
            identity("Bob Smith", name_order="natural", phones=("(561) 555-0100",)),
            [candidate(names=[ROBERT], phones={"5615550100"})],
        )

        assert match.layer == MatchLayer.NICKNAME_CONTACT
        assert match.confidence == 0.90

    def test_professional_identity(self):
        match = run_cascade(
            identity("SMITH JOHN", company="Oceanic Systems, Inc.", title="CFO", state="FL"),
            [candidate(company="OCEANIC SYSTEMS INC", title="CFO", state="FL")],
        )

        assert match.layer == MatchLayer.PROFESSIONAL
        assert match.confidence == 0.88

    def test_professional_identity_other_state(self):
        match = run_cascade(
            identity("SMITH JOHN", company="Oceanic Systems Inc", state="CA"),
            [candidate(company="OCEANIC SYSTEMS INC", state="FL")],
        )

        assert match is None

    def test_household_is_relation(self):
        match = run_cascade(
            identity("SMITH MARY", address="123 Ocean Blvd", zip_code="33480"),
            [candidate(address_keys={OCEAN_KEY}, street_zip_keys={OCEAN_STREET_ZIP})],
        )

        assert match.layer == MatchLayer.HOUSEHOLD
        assert match.confidence == 0.85

    def test_tie_lists_alternatives(self):
        match = run_cascade(
            identity("SMITH JOHN", parcel_ids=("P-1", "P-2")),
            [candidate("ENT-B", parcel_ids={"P-2"}), candidate("ENT-A", parcel_ids={"P-1"})],
        )

        assert match.entity_id == "ENT-A"
        assert match.alternatives == ["ENT-B"]

    def test_no_candidates(self):
        assert run_cascade(identity("SMITH JOHN"), []) is None


class TestReviewScore:
    """Sub-threshold similarity scoring."""

    def test_same_name_without_corroboration(self):
        scored = review_score(identity("SMITH JOHN", address="9 Elm St", zip_code="10001"), [candidate()])

        assert scored.confidence == 0.80

    def test_compatible_first_name(self):
        scored = review_score(identity("SMITH BOB"), [candidate(names=[ROBERT])])

        assert scored.confidence == 0.75

    def test_similar_name_in_same_zip(self):
        target = candidate(zip_codes={"33480"})

        scored = review_score(identity("SMITH JON", address="7 Palm Way", zip_code="33480"), [target])

        assert scored.confidence == 0.72
        assert review_score(
            identity("SMITH JON", address="7 Palm Way", zip_code="33480"), [target], floor=0.75
        ) is None

    def test_unrelated_name(self):
        assert review_score(identity("DOE JANE"), [candidate()]) is None


class TestResolveRecord:
    """Engine resolution of stored records."""

    async def test_joint_owners_become_household(self, engine):
        outcomes = await engine.resolve_record(make_property(owner_name="SMITH JOHN & MARY"))

        assert [o.kind for o in outcomes] == [OutcomeKind.SEEDED, OutcomeKind.SEEDED]
        john_id, mary_id = (o.entity_id for o in outcomes)
        links = await engine.household_of(john_id)
        assert [link.other(john_id) for link in links] == [mary_id]

        john = await engine.get_entity(john_id)
        assert john.canonical_name == "John Smith"
        assert john.confidence == 0.80
        assert john.parcel_ids == ["P-1001"]

    async def test_name_variants_link_to_same_entity(self, engine):
        (john, _) = await engine.resolve_record(make_property(owner_name="SMITH JOHN & MARY"))

        exact = await engine.resolve_record(
            make_document(document_number="2020-1", grantor_name="Smith, John J.", parcel_id=None)
        )
        fuzzy = await engine.resolve_record(
            make_document(document_number="2020-2", grantor_name="J. Smith", parcel_id=None)
        )
        chained = await engine.resolve_record(
            make_document(document_number="2020-3", grantor_name="J. Smith", property_address=None)
        )

        assert [(o.layer, o.entity_id) for o in exact + fuzzy + chained] == [
            (MatchLayer.EXACT.value, john.entity_id),
            (MatchLayer.FUZZY.value, john.entity_id),
            (MatchLayer.RECORDS_CHAIN.value, john.entity_id),
        ]
        entity = await engine.get_entity(john.entity_id)
        assert len(entity.records) == 4
        assert entity.confidence == 0.99
        assert entity.canonical_name == "John J Smith"
        assert "J. Smith" in entity.name_variants

    async def test_lender_is_not_resolved(self, engine):
        outcomes = await engine.resolve_record(make_document())

        assert [o.identity_name for o in outcomes] == ["JOHN SMITH"]

    async def test_resolving_twice_is_noop(self, engine):
        record = make_property()
        (first,) = await engine.resolve_record(record)

        (second,) = await engine.resolve_record(record)

        assert second.kind == OutcomeKind.SKIPPED
        assert second.entity_id == first.entity_id

    async def test_same_surname_at_address_is_household(self, engine):
        (john,) = await engine.resolve_record(make_property())

        (mary,) = await engine.resolve_record(
            make_document(document_number="2015-1", grantor_name="SMITH MARY", parcel_id=None)
        )

        assert mary.kind == OutcomeKind.HOUSEHOLD
        assert mary.entity_id != john.entity_id
        assert [link.other(john.entity_id) for link in await engine.household_of(john.entity_id)] == [
            mary.entity_id
        ]

    async def test_resolve_pending(self, engine, repository):
        await repository.save(make_property(owner_name="SMITH JOHN & MARY"))
        await repository.save(
            make_document(document_number="2020-1", grantor_name="Smith, John J.", parcel_id=None)
        )

        summary = await engine.resolve_pending(JURISDICTION_ID)

        assert summary.records == 2
        assert summary.count(OutcomeKind.SEEDED) == 2
        assert summary.count(OutcomeKind.LINKED) == 1
        assert len(summary.entity_ids) == 2

    async def test_weighted_mean_policy(self, store):
        engine = ResolutionEngine(store, policy=ConfidencePolicy.WEIGHTED_MEAN)
        (john,) = await engine.resolve_record(make_property())

        await engine.resolve_record(
            make_document(document_number="2020-1", grantor_name="Smith, John J.", parcel_id=None)
        )

        entity = await engine.get_entity(john.entity_id)
        assert entity.confidence == pytest.approx((0.80**2 + 0.99**2) / (0.80 + 0.99))

    async def test_unknown_entity(self, engine):
        with pytest.raises(EntityNotFound):
            await engine.get_entity("ENT-MISSING")


async def _two_john_smiths(engine: ResolutionEngine) -> tuple[str, str]:
    (first,) = await engine.resolve_record(
        make_property(parcel_id="P-1", property_address="1 Palm Way", property_zip="33480")
    )
    (queued,) = await engine.resolve_record(
        make_property(parcel_id="P-2", property_address="2 Bay Rd", property_zip="33139", property_city="MIAMI BEACH")
    )
    second = await engine.reject_review(queued.review_item_id)
    return first.entity_id, second.entity_id


class TestReview:
    """Review routing and decisions."""

    async def test_same_name_elsewhere_goes_to_review(self, engine):
        (john,) = await engine.resolve_record(make_property())

        (outcome,) = await engine.resolve_record(
            make_property(parcel_id="P-3", property_address="9 Elm St", property_zip="10001", state="NY")
        )

        assert outcome.kind == OutcomeKind.REVIEW
        assert outcome.confidence == 0.80
        (item,) = await engine.review_queue.pending()
        assert item.candidate_entity_id == john.entity_id

    async def test_pending_mention_is_not_requeued(self, engine):
        await engine.resolve_record(make_property())
        record = make_property(parcel_id="P-3", property_address="9 Elm St", property_zip="10001")
        (queued,) = await engine.resolve_record(record)

        (again,) = await engine.resolve_record(record)

        assert again.kind == OutcomeKind.SKIPPED
        assert again.review_item_id == queued.review_item_id
        assert len(await engine.review_queue.pending()) == 1

    async def test_approve_links_to_candidate(self, engine):
        (john,) = await engine.resolve_record(make_property())
        (queued,) = await engine.resolve_record(
            make_property(parcel_id="P-3", property_address="9 Elm St", property_zip="10001")
        )

        entity = await engine.approve_review(queued.review_item_id)

        assert entity.entity_id == john.entity_id
        assert entity.evidence[-1].layer == MatchLayer.REVIEW.value
        assert len(entity.records) == 2
        item = await engine.review_queue.get(queued.review_item_id)
        assert item.status == ReviewStatus.APPROVED
        with pytest.raises(ResolutionError):
            await engine.approve_review(queued.review_item_id)

    async def test_reject_seeds_new_entity(self, engine):
        first_id, second_id = await _two_john_smiths(engine)

        assert first_id != second_id
        assert not await engine.review_queue.pending()

    async def test_tie_goes_to_review(self, engine):
        await _two_john_smiths(engine)

        (outcome,) = await engine.resolve_record(make_court_case(related_properties=["P-1", "P-2"]))

        assert outcome.kind == OutcomeKind.REVIEW
        (item,) = await engine.review_queue.pending()
        assert item.reason.startswith("Tied public_records_chain")

    async def test_unknown_item(self, engine):
        with pytest.raises(ReviewItemNotFound):
            await engine.reject_review("REV-MISSING")


class TestMerge:
    """Merging entities and following redirects."""

    async def test_merge_moves_links_and_redirects(self, engine, signal_service):
        survivor_id, loser_id = await _two_john_smiths(engine)
        await signal_service.process(survivor_id)
        await signal_service.process(loser_id)
        loser_signals = await signal_service.signals_for(loser_id)
        (tie,) = await engine.resolve_record(make_court_case(related_properties=["P-1", "P-2"]))

        result = await engine.merge(survivor_id, loser_id)

        assert result.records_moved == 1
        assert result.signals_moved == len(loser_signals)
        assert await engine.links_for_entity(loser_id) == []
        assert len(await engine.links_for_entity(survivor_id)) == 2
        assert await engine.resolve_id(loser_id) == survivor_id
        assert (await engine.get_entity(loser_id)).entity_id == survivor_id
        assert (await engine.get_entity(loser_id, follow_redirects=False)).merged_into == survivor_id
        assert len(result.survivor.records) == 2
        assert await signal_service.signals_for(loser_id) == []
        item = await engine.review_queue.get(tie.review_item_id)
        assert item.candidate_entity_id == survivor_id

    async def test_merge_drops_duplicate_observations(self, engine, repository, signal_service):
        joint = make_property(owner_name="SMITH JOHN & MARY")
        mortgage = make_document(document_number="2015-1", grantor_name="SMITH MARY", parcel_id=None)
        await repository.save(joint)
        await repository.save(mortgage)
        john, mary = await engine.resolve_record(joint)
        await engine.resolve_record(mortgage)
        await signal_service.process(john.entity_id)
        await signal_service.process(mary.entity_id)
        john_signals = await signal_service.signals_for(john.entity_id)
        mary_signals = await signal_service.signals_for(mary.entity_id)
        assert john_signals

        result = await engine.merge(john.entity_id, mary.entity_id, allow_household=True)

        assert result.signals_deduplicated == len(mary_signals)
        assert result.signals_moved == 0
        assert result.records_moved == 2
        assert [r.natural_key for r in result.survivor.records] == ["P-1001", "2015-1"]
        assert len(await signal_service.signals_for(john.entity_id)) == len(john_signals)
        assert await signal_service.signals_for(mary.entity_id) == []
        assert await engine.resolve_id(mary.entity_id) == john.entity_id

    async def test_merged_mention_resolves_to_survivor(self, engine):
        survivor_id, loser_id = await _two_john_smiths(engine)
        await engine.merge(survivor_id, loser_id)

        (outcome,) = await engine.resolve_record(
            make_property(parcel_id="P-2", property_address="2 Bay Rd", property_zip="33139", property_city="MIAMI BEACH")
        )

        assert outcome.kind == OutcomeKind.SKIPPED
        assert outcome.entity_id == survivor_id

    async def test_household_members_need_override(self, engine):
        john, mary = await engine.resolve_record(make_property(owner_name="SMITH JOHN & MARY"))

        with pytest.raises(MergeNotAllowed):
            await engine.merge(john.entity_id, mary.entity_id)

        result = await engine.merge(john.entity_id, mary.entity_id, allow_household=True)
        assert result.records_moved == 1
        assert await engine.household_of(john.entity_id) == []

    async def test_merge_with_self_is_noop(self, engine):
        (john,) = await engine.resolve_record(make_property())

        result = await engine.merge(john.entity_id, john.entity_id)

        assert result.records_moved == 0
        assert not result.survivor.is_redirect


class TestEnrich:
    async def test_attaches_contacts_age_and_addresses(self, engine):
        (john,) = await engine.resolve_record(make_property())

        entity = await engine.enrich(
            john.entity_id,
            SkipTraceResult(
                input_name="JOHN SMITH",
                input_address="123 OCEAN BLVD",
                phones=[SkipTracePhone(number="561-555-0100", score=0.9)],
                emails=[SkipTraceEmail(address="john@example.test")],
                age=61,
                previous_addresses=["45 Elm St, Springfield, IL 62701"],
            ),
        )

        assert entity.phones() == {"561-555-0100"}
        assert entity.emails() == {"john@example.test"}
        assert entity.age_estimate == 61
        assert {a.street_key for a in entity.addresses} == {"123 OCEAN BLVD", "45 ELM ST"}
        assert "batchskiptracing" in entity.sources


class TestOwnershipChange:
    """A re-scraped record naming someone else moves off the old entity."""

    async def test_new_owner_is_relinked(self, engine, repository, signal_service):
        owned = make_property()
        await repository.save(owned)
        (john,) = await engine.resolve_record(owned)
        await signal_service.process(john.entity_id)
        assert await signal_service.signals_for(john.entity_id)

        sold = make_property(owner_name="DOE JANE")
        await repository.save(sold)
        (jane,) = await engine.resolve_record(sold)

        assert jane.kind == OutcomeKind.SEEDED
        assert jane.entity_id != john.entity_id
        assert jane.previous_entity_id == john.entity_id
        old = await engine.get_entity(john.entity_id)
        assert old.records == []
        assert old.parcel_ids == []
        assert await engine.links_for_entity(john.entity_id) == []
        assert await signal_service.signals_for(john.entity_id) == []
        assert (await engine.get_entity(jane.entity_id)).parcel_ids == ["P-1001"]
        assert await engine.entities_for_parcels({"P-1001"}) == {jane.entity_id}

    async def test_old_owner_keeps_parcels_from_other_records(self, engine, repository):
        owned = make_property()
        mortgage = make_document()
        await repository.save(owned)
        await repository.save(mortgage)
        (john,) = await engine.resolve_record(owned)
        await engine.resolve_record(mortgage)

        sold = make_property(owner_name="DOE JANE")
        await repository.save(sold)
        (jane,) = await engine.resolve_record(sold)

        old = await engine.get_entity(john.entity_id)
        assert [r.natural_key for r in old.records] == ["2011-000123"]
        assert old.parcel_ids == ["P-1001"]
        assert await engine.entities_for_parcels({"P-1001"}) == {john.entity_id, jane.entity_id}

    async def test_same_name_is_not_relinked(self, engine, repository):
        owned = make_property()
        await repository.save(owned)
        (john,) = await engine.resolve_record(owned)

        (again,) = await engine.resolve_record(make_property(market_value=2_700_000))

        assert again.kind == OutcomeKind.SKIPPED
        assert again.previous_entity_id is None
        assert again.entity_id == john.entity_id

    async def test_dropped_co_owner_is_unlinked(self, engine, repository):
        joint = make_property(owner_name="SMITH JOHN & MARY")
        await repository.save(joint)
        john, mary = await engine.resolve_record(joint)

        single = make_property()
        await repository.save(single)
        outcomes = await engine.resolve_record(single)

        assert [o.kind for o in outcomes] == [OutcomeKind.SKIPPED, OutcomeKind.UNLINKED]
        assert outcomes[0].entity_id == john.entity_id
        assert outcomes[1].previous_entity_id == mary.entity_id
        assert (await engine.get_entity(mary.entity_id)).records == []
        assert len((await engine.get_entity(john.entity_id)).records) == 1


class YieldingStore(MemoryStore):
    """Gives other tasks a turn before every read and write."""

    async def get(self, table, key):
        await asyncio.sleep(0)
        return await super().get(table, key)

    async def upsert(self, table, key, fields):
        await asyncio.sleep(0)
        return await super().upsert(table, key, fields)


class TestConcurrency:
    """Interleaved writers on the same entities."""

    @pytest_asyncio.fixture
    async def engine(self):
        async with YieldingStore() as store:
            yield ResolutionEngine(store)

    async def test_concurrent_links_keep_all_evidence(self, engine):
        (john,) = await engine.resolve_record(make_property())
        documents = [
            make_document(document_number=f"2020-{n}", grantor_name="Smith, John J.", parcel_id=None)
            for n in range(5)
        ]

        results = await asyncio.gather(*(engine.resolve_record(d) for d in documents))

        assert {outcome.entity_id for (outcome,) in results} == {john.entity_id}
        entity = await engine.get_entity(john.entity_id)
        assert len(entity.evidence) == 6
        assert len(await engine.links_for_entity(john.entity_id)) == 6

    async def test_link_racing_merge_lands_on_survivor(self, engine):
        survivor_id, loser_id = await _two_john_smiths(engine)
        document = make_document(
            document_number="2020-9",
            grantor_name="SMITH JOHN",
            property_address="2 Bay Rd",
            property_zip="33139",
            parcel_id=None,
        )

        result, (outcome,) = await asyncio.gather(
            engine.merge(survivor_id, loser_id), engine.resolve_record(document)
        )

        survivor = await engine.get_entity(survivor_id)
        loser = await engine.get_entity(loser_id, follow_redirects=False)
        assert result.survivor.entity_id == survivor_id
        assert outcome.mention_key in {ev.mention_key for ev in survivor.evidence}
        assert loser.merged_into == survivor_id
        assert loser.evidence == []
        assert outcome.mention_key in {row["mention_key"] for row in await engine.links_for_entity(survivor_id)}
        assert await engine.links_for_entity(loser_id) == []

    async def test_opposite_merges_do_not_deadlock(self, engine):
        first_id, second_id = await _two_john_smiths(engine)

        results = await asyncio.wait_for(
            asyncio.gather(
                engine.merge(first_id, second_id),
                engine.merge(second_id, first_id),
                return_exceptions=True,
            ),
            timeout=5,
        )

        assert all(isinstance(r, (MergeResult, ResolutionError)) for r in results)
        redirects = [
            (await engine.get_entity(eid, follow_redirects=False)).is_redirect
            for eid in (first_id, second_id)
        ]
        assert sorted(redirects) == [False, True]
