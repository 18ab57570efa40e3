from decimal import Decimal

from pipelines.classify import RowClassifier
from pipelines.config import ProcessorConfig
from pipelines.locations import LocationResolver, unique_location_keys
from pipelines.model import ClassifiedRow, Location, LocationKey, PriceIndexRecord, RawRow
from pipelines.prices import BatchPersister, PriceRecordBuilder, parse_index_value
from pipelines.processor import ShfDataProcessor

HEADER = "Consecutivo;Global;Estado;Municipio;Trimestre;Año;Indice"


def _csv(*lines: str) -> str:
    return "\n".join([HEADER, *lines]) + "\n"


def _classified(category="Nacional", state="", municipality="", quarter=1, year=2020):
    row = RawRow(
        category=category,
        state=state,
        municipality=municipality,
        quarter=quarter,
        year=year,
        index_text="100.00",
    )
    return RowClassifier().classify(row)


def test_national_row_becomes_one_untyped_record(store):
    result = ShfDataProcessor(store).process_csv(_csv("1;Nacional;;;2;2020;150,25"), "shf.csv")

    assert result.success is True
    assert result.records_processed == 1
    [record] = store.price_indices.values()
    assert record.quarter == 2
    assert record.year == 2020
    assert record.index_value == Decimal("150.25")
    assert record.property_type_id is None
    assert record.location_id == store.location_named("Nacional").id


def test_property_type_row_attaches_to_national_location(store):
    ShfDataProcessor(store).process_csv(_csv("1;Usada;;;1;2021;140,10"), "shf.csv")

    [record] = store.price_indices.values()
    assert record.property_type_id == "pt-usada"
    assert record.location_id == store.location_named("Nacional").id


def test_short_line_produces_nothing_and_no_error(store):
    result = ShfDataProcessor(store).process_csv(_csv("1;Nacional;;;2"), "shf.csv")

    assert result.success is True
    assert result.records_processed == 0
    assert store.price_indices == {}


def test_economic_social_rows_are_excluded(store):
    result = ShfDataProcessor(store).process_csv(
        _csv("1;Economica - Social;Jalisco;Zapopan;1;2020;99,00"), "shf.csv"
    )

    assert result.records_processed == 0
    assert store.locations == []


def test_same_municipality_creates_one_location(store):
    ShfDataProcessor(store).process_csv(
        _csv(
            "1;Municipal;Jalisco;Guadalajara;1;2020;120,00",
            "2;Municipal;Jalisco;Guadalajara;2;2020;121,00",
        ),
        "shf.csv",
    )

    municipalities = [loc for loc in store.locations if loc.type == "municipality"]
    assert len(municipalities) == 1
    assert municipalities[0].state == "Jalisco"
    assert {record.location_id for record in store.price_indices.values()} == {
        municipalities[0].id
    }


def test_failed_batch_does_not_block_later_batches(store):
    store.fail_batches = {2}
    lines = [f"{i};Nacional;;;{(i % 4) + 1};{2010 + i};{100 + i},00" for i in range(6)]

    processor = ShfDataProcessor(store, ProcessorConfig(batch_size=2))
    result = processor.process_csv(_csv(*lines), "shf.csv")

    assert store.upsert_calls == [2, 2, 2]
    assert len(store.price_indices) == 4
    assert result.success is True
    assert result.records_processed == 6
    log = store.upload_logs["log-1"]
    assert log.status == "completed"
    assert log.records_processed == 6


def test_full_file_run_reports_counts(store, shf_csv_text):
    report = ShfDataProcessor(store).ingest(shf_csv_text, "shf.csv")

    assert report.result.success is True
    assert report.result.records_processed == 8
    assert report.stats.rows_parsed == 9
    assert report.stats.rows_residential == 8
    assert report.stats.locations.created == 4
    assert report.stats.persist.succeeded == 1
    assert {loc.type for loc in store.locations} == {
        "national",
        "metro_zone",
        "state",
        "municipality",
    }


def test_rerun_is_idempotent(store, shf_csv_text):
    processor = ShfDataProcessor(store)
    processor.process_csv(shf_csv_text, "first.csv")
    first_indices = dict(store.price_indices)
    first_locations = list(store.locations)

    second = processor.process_csv(shf_csv_text, "second.csv")

    assert second.success is True
    assert store.price_indices == first_indices
    assert store.locations == first_locations
    assert [log.status for log in store.upload_logs.values()] == ["completed", "completed"]


def test_upload_log_creation_failure_aborts_without_side_effects(store, shf_csv_text):
    store.fail_create_log = True

    result = ShfDataProcessor(store).process_csv(shf_csv_text, "shf.csv")

    assert result.success is False
    assert result.records_processed == 0
    assert result.error.startswith("Failed to create upload log")
    assert store.locations == []
    assert store.upsert_calls == []


def test_unreadable_property_types_fail_the_run(store, shf_csv_text):
    store.fail_property_types = True

    result = ShfDataProcessor(store).process_csv(shf_csv_text, "shf.csv")

    assert result.success is False
    assert "property types unavailable" in result.error
    log = store.upload_logs["log-1"]
    assert log.status == "failed"
    assert log.error_message == result.error
    assert store.upsert_calls == []


def test_unexpected_exception_becomes_failure_result(store, shf_csv_text, monkeypatch):
    def explode():
        raise RuntimeError("connection reset")

    monkeypatch.setattr(store, "list_locations", explode)

    result = ShfDataProcessor(store).process_csv(shf_csv_text, "shf.csv")

    assert result.success is False
    assert result.error == "connection reset"
    assert store.upload_logs["log-1"].status == "failed"


def test_failure_to_mark_completed_is_reported(store, shf_csv_text):
    store.fail_update_log = True

    result = ShfDataProcessor(store).process_csv(shf_csv_text, "shf.csv")

    assert result.success is False
    assert store.upload_logs["log-1"].status == "processing"


def test_process_file_detects_legacy_encoding(store):
    data = _csv("1;Municipal;Querétaro;Querétaro;1;2020;110,00").encode("cp1252")

    result = ShfDataProcessor(store).process_file(data, "shf.csv")

    assert result.success is True
    municipality = store.location_named("Querétaro")
    assert municipality.state == "Querétaro"


def test_unique_keys_are_ordered_parents_first():
    rows = [
        _classified("Municipal", state="Jalisco", municipality="Zapopan"),
        _classified("Estatal", state="Jalisco"),
        _classified("Nacional"),
        _classified("Nacional", quarter=2),
    ]

    keys = unique_location_keys(rows)

    assert [key.type for key in keys] == ["national", "state", "municipality"]


def test_resolver_reuses_existing_locations(store):
    store.locations.append(Location(id="existing-national", type="national", name="Nacional"))

    resolution = LocationResolver(store).resolve([_classified("Nacional")])

    assert resolution.get(LocationKey(name="Nacional", type="national")) == "existing-national"
    assert resolution.reused == 1
    assert resolution.created == 0
    assert len(store.locations) == 1


def test_resolver_links_new_locations_to_parents(store):
    resolution = LocationResolver(store).resolve(
        [
            _classified("Municipal", state="Jalisco", municipality="Zapopan"),
            _classified("Estatal", state="Jalisco"),
            _classified("ZM Guadalajara"),
            _classified("Nacional"),
        ]
    )

    national = store.location_named("Nacional")
    jalisco = store.location_named("Jalisco")
    assert national.parent_id is None
    assert jalisco.parent_id == national.id
    assert store.location_named("Zapopan").parent_id == jalisco.id
    assert store.location_named("ZM Guadalajara").parent_id == national.id
    assert len(resolution) == 4


def test_resolver_skips_keys_that_fail(store):
    store.fail_location_names = {"Jalisco"}

    resolution = LocationResolver(store).resolve(
        [_classified("Estatal", state="Jalisco"), _classified("Estatal", state="Colima")]
    )

    assert resolution.failed == 1
    assert resolution.get(LocationKey(name="Jalisco", type="state")) is None
    assert resolution.get(LocationKey(name="Colima", type="state")) is not None


def test_builder_skips_unresolved_and_unparseable_rows(store):
    classifier = RowClassifier()
    good = _classified("Nacional")
    unparseable = ClassifiedRow(
        row=good.row.model_copy(update={"index_text": "n/a"}), key=good.key
    )
    unresolved = _classified("Estatal", state="Colima")
    resolver = LocationResolver(store)
    resolution = resolver.resolve([good])

    outcome = PriceRecordBuilder(store, classifier).build(
        [good, unparseable, unresolved], resolution
    )

    assert outcome.processed == 1
    assert outcome.skipped == 2
    assert len(outcome.records) == 1


def test_builder_stores_unknown_property_type_as_untyped(store):
    store.property_types = [pt for pt in store.property_types if pt.name != "usada"]
    rows = [_classified("Usada")]
    resolution = LocationResolver(store).resolve(rows)

    outcome = PriceRecordBuilder(store, RowClassifier()).build(rows, resolution)

    assert outcome.records[0].property_type_id is None


def test_persister_splits_into_fixed_size_batches(store):
    records = [
        PriceIndexRecord(location_id="loc-1", quarter=1, year=2005 + i, index_value=Decimal(i))
        for i in range(2500)
    ]

    outcome = BatchPersister(store).persist(records)

    assert store.upsert_calls == [1000, 1000, 500]
    assert outcome.batches == 3
    assert outcome.written == 2500


def test_parse_index_value_rejects_non_finite_text():
    assert parse_index_value("150.25") == Decimal("150.25")
    assert parse_index_value("NaN") is None
    assert parse_index_value("Infinity") is None
    assert parse_index_value("") is None


def test_builder_skips_rows_outside_the_series_period(store):
    rows = [
        _classified("Nacional", quarter=1, year=2020),
        _classified("Nacional", quarter=0, year=2020),
        _classified("Nacional", quarter=5, year=2020),
        _classified("Nacional", quarter=2, year=2004),
    ]
    resolution = LocationResolver(store).resolve(rows)

    outcome = PriceRecordBuilder(store, RowClassifier()).build(rows, resolution)

    assert outcome.processed == 1
    assert outcome.skipped == 3
    assert [(record.quarter, record.year) for record in outcome.records] == [(1, 2020)]


def test_unparseable_quarter_is_skipped_not_persisted(store):
    result = ShfDataProcessor(store).process_csv(
        _csv(
            "1;Nacional;;;1;2020;100,00",
            "2;Nacional;;;2;2020;101,00",
            "3;Nacional;;;T3;2020;102,00",
        ),
        "shf.csv",
    )

    assert result.success is True
    assert result.records_processed == 2
    assert sorted(record.quarter for record in store.price_indices.values()) == [1, 2]


class ConnectionLost(Exception):
    pass


def test_upload_log_creation_crash_becomes_failure_result(store, shf_csv_text, monkeypatch):
    def explode(filename):
        raise ConnectionLost("db gone")

    monkeypatch.setattr(store, "create_upload_log", explode)

    result = ShfDataProcessor(store).process_csv(shf_csv_text, "shf.csv")

    assert result.success is False
    assert result.error == "Failed to create upload log: db gone"
    assert store.locations == []
    assert store.upsert_calls == []


def test_failure_to_mark_failed_still_returns_result(store, shf_csv_text, monkeypatch):
    def explode():
        raise RuntimeError("connection reset")

    def update_crashes(*args, **kwargs):
        raise ConnectionLost("db gone")

    monkeypatch.setattr(store, "list_locations", explode)
    monkeypatch.setattr(store, "update_upload_log", update_crashes)

    result = ShfDataProcessor(store).process_csv(shf_csv_text, "shf.csv")

    assert result.success is False
    assert result.error == "connection reset"
    assert store.upload_logs["log-1"].status == "processing"
