"""Column detector tests."""

from __future__ import annotations

import hypothesis.strategies as st
import pytest
from hypothesis import given

from stocktally.ingest.detector import detect_columns, suggest_column_types
from stocktally.ingest.errors import InsufficientColumnsError, NoHeadersError

KNOWN_HEADERS = [
    "L.p.",
    "Lp",
    "Nr indeksu",
    "Kod produktu",
    "Number",
    "Nazwa",
    "Nazwa towaru",
    "Description",
    "Ilość",
    "Qty",
    "Quantity",
    "Amount",
    "JMZ",
    "Jednostka",
    "UoM",
    "Col",
    "Notes",
    "",
]


class TestDetection:
    def test_polish_layout_with_all_fields(self):
        headers = ["L.p.", "Nr indeksu", "Nazwa towaru", "Ilość", "JMZ"]
        sample = [[1, "A001", "Test Item", 10, "szt"]]

        result = detect_columns(headers, sample)

        assert result.mapping.to_wire() == {"lp": 0, "itemId": 1, "name": 2, "quantity": 3, "unit": 4}
        assert result.confidence == 1.0

    def test_required_fields_only(self):
        result = detect_columns(["Nazwa", "Ilość", "Jednostka"], [])

        assert result.mapping.to_wire() == {"name": 0, "quantity": 1, "unit": 2}
        assert result.mapping.lp is None
        assert result.mapping.item_id is None
        assert result.confidence == 1.0

    def test_unrecognisable_headers_fail_closed(self):
        with pytest.raises(InsufficientColumnsError) as excinfo:
            detect_columns(["Col1", "Col2", "Col3", "Col4"], [])

        assert excinfo.value.found == []
        assert excinfo.value.missing == ["name", "quantity", "unit"]

    def test_partial_detection_lists_found_fields(self):
        with pytest.raises(InsufficientColumnsError) as excinfo:
            detect_columns(["Nazwa", "Col2"], [])

        assert excinfo.value.found == ["name"]
        assert excinfo.value.missing == ["quantity", "unit"]
        assert "Found: name" in str(excinfo.value)

    def test_empty_headers_rejected(self):
        with pytest.raises(NoHeadersError):
            detect_columns([], [])

    def test_english_layout(self):
        headers = ["Position", "Item Code", "Product Name", "Quantity", "Unit"]
        result = detect_columns(headers)

        assert result.mapping.to_wire() == {"lp": 0, "itemId": 1, "name": 2, "quantity": 3, "unit": 4}

    def test_erp_export_layout(self):
        headers = ["Material", "Description", "Amount", "UoM"]
        result = detect_columns(headers)

        assert result.mapping.to_wire() == {"itemId": 0, "name": 1, "quantity": 2, "unit": 3}
        assert result.mapping.lp is None

    def test_column_order_does_not_matter(self):
        result = detect_columns(["JMZ", "Ilość", "Nazwa"])
        assert result.mapping.to_wire() == {"name": 2, "quantity": 1, "unit": 0}

    def test_content_decides_quantity_without_header(self):
        headers = ["Nazwa", "Col", "Jednostka"]
        sample = [["Bolt", 12, "szt"], ["Nut", "40", "szt"], ["Washer", 7.5, "kg"]]

        result = detect_columns(headers, sample)

        assert result.mapping.quantity == 1


class TestTieBreakAndSuggestions:
    def test_equal_scores_pick_the_earliest_column(self):
        result = detect_columns(["Ilość", "Qty", "Nazwa", "JMZ"])

        assert result.mapping.quantity == 0
        assert result.suggestions["quantity"] == [1]

    def test_suggestions_are_runner_ups_best_first(self):
        headers = ["Ilość", "Qty", "Quantity", "Stock", "Amount", "Nazwa", "JMZ"]
        result = detect_columns(headers)

        assert result.mapping.quantity == 2
        assert result.suggestions["quantity"] == [4, 0, 1]

    def test_suggestions_never_include_the_winner(self):
        result = detect_columns(["Nazwa", "Description", "Ilość", "JMZ"])

        assert result.mapping.name == 0
        assert result.suggestions["name"] == [1]
        assert result.suggestions["unit"] == []

    def test_shared_column_goes_to_one_field(self):
        # "Number" matches both the row-number and item-id patterns.
        result = detect_columns(["Number", "Nazwa", "Ilość", "JMZ"])

        assert result.mapping.lp == 0
        assert result.mapping.item_id is None
        assert result.suggestions["item_id"] == [0]

    def test_losing_field_falls_back_to_next_candidate(self):
        headers = ["Nazwa", "Jednostka", "Col"]
        sample = [["a", 5, 7], ["b", 6, 8]]

        result = detect_columns(headers, sample)

        assert result.mapping.unit == 1
        assert result.mapping.quantity == 2

    def test_required_field_beats_optional_field_on_shared_column(self):
        # Small sequential quantities also look like row numbers (lp 0.4 vs quantity 0.3).
        headers = ["Nazwa", "Ilość szt", "JMZ"]
        sample = [["A", 1, "szt"], ["B", 2, "szt"], ["C", 5, "szt"]]

        result = detect_columns(headers, sample)

        assert result.mapping.quantity == 1
        assert result.mapping.lp is None
        assert result.suggestions["lp"] == [1]
        assert result.confidence == 1.0

    def test_required_fields_are_all_placed_when_possible(self):
        # "Nazwa" is the best name column but also the only numeric one.
        headers = ["Nazwa", "Towar", "JMZ"]
        sample = [[4, "Bolt", "szt"], [7, "Nut", "szt"]]

        result = detect_columns(headers, sample)

        assert result.mapping.quantity == 0
        assert result.mapping.name == 1
        assert result.mapping.unit == 2


class TestDetectionProperties:
    @given(st.lists(st.sampled_from(KNOWN_HEADERS), min_size=1, max_size=8))
    def test_detection_is_idempotent(self, headers):
        def run():
            try:
                return detect_columns(headers, [])
            except InsufficientColumnsError as exc:
                return ("insufficient", exc.found, exc.missing)

        assert run() == run()

    @given(st.lists(st.sampled_from(KNOWN_HEADERS), min_size=1, max_size=8))
    def test_successful_mapping_has_distinct_required_fields(self, headers):
        try:
            result = detect_columns(headers, [])
        except InsufficientColumnsError:
            return

        mapping = result.mapping
        required = [mapping.name, mapping.quantity, mapping.unit]
        assert None not in required
        assert len(set(required)) == 3
        indices = list(mapping.indices().values())
        assert len(indices) == len(set(indices))
        assert all(0 <= index < len(headers) for index in indices)
        assert result.confidence == 1.0


class TestSuggestColumnTypes:
    def test_suggests_matching_fields_per_column(self):
        suggestions = suggest_column_types(["Nazwa", "Col2", "Number"])

        assert [s.column for s in suggestions] == [0, 1, 2]
        assert suggestions[0].possible_types == ["name"]
        assert suggestions[0].confidence == 0.8
        assert suggestions[1].possible_types == ["unknown"]
        assert suggestions[1].confidence == 0.3
        assert suggestions[2].possible_types == ["lp", "item_id"]

    def test_headers_are_trimmed(self):
        suggestions = suggest_column_types(["  Ilość  "])
        assert suggestions[0].header == "Ilość"
        assert suggestions[0].possible_types == ["quantity"]

    def test_empty_header_list(self):
        assert suggest_column_types([]) == []
