import json
from pathlib import Path

import pytest
import requests

from popradius.errors import InvalidQueryError, LoadError
from popradius.regions.ids import canonical_id, id_variants
from popradius.regions.load import geodesic_area_m2, load_region_store, load_regions, read_dataset
from popradius.regions.years import YearCatalog
from popradius.settings import default_settings

from conftest import feature_collection, square_feature


def _years() -> YearCatalog:
    return YearCatalog.from_settings(default_settings()["years"])


def test_canonical_id_pads_and_rejects_sentinels() -> None:
    assert canonical_id(3153019) == "03153019"
    assert canonical_id("3153019") == "03153019"
    assert canonical_id(" 03153019 ") == "03153019"
    assert canonical_id(3153019.0) == "03153019"
    assert canonical_id("DE-BE") == "DE-BE"
    assert canonical_id("0000") is None
    assert canonical_id(0) is None
    assert canonical_id("") is None
    assert canonical_id(None) is None
    assert canonical_id(1.5) is None


def test_id_variants_include_unpadded_form() -> None:
    assert id_variants("03153019") == ["03153019", "3153019"]
    assert id_variants("11000000") == ["11000000"]
    assert id_variants("DE-BE") == ["DE-BE"]


def test_load_regions_canonicalizes_and_skips_bad_features() -> None:
    good = square_feature(3153019, dx_m=0, dy_m=0, half_size_m=500, props={"pop_2019": 7})
    fallback = square_feature(None, dx_m=5_000, dy_m=0, half_size_m=500, props={"id": "12", "pop_2019": 3})
    zero_id = square_feature("00000000", dx_m=9_000, dy_m=0, half_size_m=500, props={"pop_2019": 1})
    point = {"type": "Feature", "properties": {"AGS": "09000001", "pop_2019": 5}, "geometry": {"type": "Point", "coordinates": [10, 51]}}
    no_geom = {"type": "Feature", "properties": {"AGS": "09000002", "pop_2019": 5}, "geometry": None}
    dup = square_feature("03153019", dx_m=20_000, dy_m=0, half_size_m=500, props={"pop_2019": 99})

    store = load_regions(feature_collection([good, fallback, zero_id, point, no_geom, dup, "junk"]), years=_years())

    assert len(store) == 2
    assert "3153019" in store
    assert store.get("3153019").id == "03153019"
    assert store.get(3153019).population(store.years.resolve("2019")) == 7
    assert store.get("00000012").id == "00000012"
    assert store.stats.skipped_no_id == 1
    assert store.stats.skipped_bad_geometry == 3
    assert store.stats.skipped_duplicate_id == 1


def test_only_years_present_in_dataset_are_selectable(row_dataset) -> None:
    store = load_regions(row_dataset, years=_years())
    assert [y.label for y in store.years] == ["1871", "2019"]
    assert store.years.resolve("pop_2019").index == 1
    with pytest.raises(InvalidQueryError):
        store.years.resolve("1939")


def test_missing_population_is_zero_and_area_is_computed() -> None:
    a = square_feature("01", dx_m=0, dy_m=0, half_size_m=1000, props={"pop_2019": 10})
    b = square_feature("02", dx_m=5_000, dy_m=0, half_size_m=1000, props={"pop_2019": None, "area": "n/a"})
    store = load_regions(feature_collection([a, b]), years=_years())

    year = store.years.resolve("2019")
    assert store.get("02").population(year) == 0
    assert store.stats.missing_population_values == 1
    assert store.stats.areas_computed == 2

    region = store.get("01")
    assert region.area_m2 == pytest.approx(geodesic_area_m2(region.geometry))
    # A 2 km Mercator square at 51N is about 1.26 km on the ground per side.
    assert region.area_m2 == pytest.approx(1.585e6, rel=0.02)


def test_bbox_encloses_polygon_in_mercator() -> None:
    feature = square_feature("01", dx_m=0, dy_m=0, half_size_m=1000, props={"pop_2019": 1})
    store = load_regions(feature_collection([feature]), years=_years())
    box = store.get("01").bbox
    assert box.max_x - box.min_x == pytest.approx(2000.0, rel=1e-6)
    assert box.max_y - box.min_y == pytest.approx(2000.0, rel=1e-6)


def test_negative_population_fails_loudly() -> None:
    feature = square_feature("01", dx_m=0, dy_m=0, half_size_m=1000, props={"pop_2019": -5})
    with pytest.raises(LoadError, match="pop_2019"):
        load_regions(feature_collection([feature]), years=_years())


@pytest.mark.parametrize("value", [1e20, 2**63, float("inf")])
def test_population_too_large_for_exact_sums_fails_loudly(value) -> None:
    # Without the upper bound these values wrap to negative counts when stored as int64.
    feature = square_feature("01", dx_m=0, dy_m=0, half_size_m=1000, props={"pop_2019": value})
    with pytest.raises(LoadError, match="pop_2019"):
        load_regions(feature_collection([feature]), years=_years())


def test_largest_exact_population_still_loads() -> None:
    feature = square_feature("01", dx_m=0, dy_m=0, half_size_m=1000, props={"pop_2019": 2**53})
    store = load_regions(feature_collection([feature]), years=_years())
    year = store.years.resolve("2019")
    assert store.get("01").population(year) == 2**53
    assert store.total_population(year) > 0


@pytest.mark.parametrize(
    "raw",
    [
        {"type": "Feature", "properties": {}, "geometry": None},
        {"type": "FeatureCollection"},
        {"type": "FeatureCollection", "features": []},
    ],
)
def test_unusable_datasets_raise_load_error(raw) -> None:
    with pytest.raises(LoadError):
        load_regions(raw, years=_years())


def test_dataset_without_population_fields_is_rejected() -> None:
    feature = square_feature("01", dx_m=0, dy_m=0, half_size_m=1000, props={"EWZ": 5})
    with pytest.raises(LoadError, match="population field"):
        load_regions(feature_collection([feature]), years=_years())


def test_read_dataset_from_file(tmp_path: Path, row_dataset) -> None:
    path = tmp_path / "x.geojson"
    path.write_text(json.dumps(row_dataset), encoding="utf-8")
    assert read_dataset(str(path))["type"] == "FeatureCollection"

    with pytest.raises(LoadError, match="cannot read"):
        read_dataset(str(tmp_path / "missing.geojson"))

    bad = tmp_path / "bad.geojson"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(LoadError, match="invalid JSON"):
        read_dataset(str(bad))


class _FakeResponse:
    def __init__(self, *, status_code: int, payload: object) -> None:
        self.status_code = status_code
        self._payload = payload

    def json(self) -> object:
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


def test_read_dataset_over_http(monkeypatch: pytest.MonkeyPatch, row_dataset) -> None:
    calls: list[dict[str, object]] = []

    def fake_get(url: str, timeout: float) -> _FakeResponse:
        calls.append({"url": url, "timeout": timeout})
        return _FakeResponse(status_code=200, payload=row_dataset)

    monkeypatch.setattr(requests, "get", fake_get)
    settings = default_settings()
    settings["dataset"]["location"] = "https://example.org/regions.geojson"
    settings["dataset"]["timeout_s"] = 5
    store = load_region_store(settings)

    assert len(store) == 4
    assert calls == [{"url": "https://example.org/regions.geojson", "timeout": 5.0}]


def test_http_error_becomes_load_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(requests, "get", lambda url, timeout: _FakeResponse(status_code=404, payload=None))
    with pytest.raises(LoadError, match="request failed"):
        read_dataset("https://example.org/missing.geojson")
