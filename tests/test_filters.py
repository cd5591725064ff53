from datetime import datetime, timezone

import pandas as pd
import pytest

from flowtrace.errors import ConfigurationError
from flowtrace.filters import FilterCondition, apply_conditions


class TestConditions:
    def test_equals(self, loan_df):
        subset = apply_conditions(loan_df, [FilterCondition("Source", "=", "Branch")])
        assert list(subset["Id"]) == ["R003", "R008"]

    def test_not_equals_numeric(self, loan_df):
        subset = apply_conditions(loan_df, [FilterCondition("Amount", "!=", "50000")])
        assert "R001" not in set(subset["Id"])
        assert len(subset) == 9

    def test_comparisons_are_anded(self, loan_df):
        conditions = [FilterCondition("Amount", ">=", 100000), FilterCondition("Outcome", "=", "Approved")]
        subset = apply_conditions(loan_df, conditions)
        assert list(subset["Id"]) == ["R002", "R004", "R006"]

    def test_like(self, loan_df):
        subset = apply_conditions(loan_df, [FilterCondition("Name", "LIKE", "%corp%")])
        assert list(subset["Id"]) == ["R001", "R008"]

    def test_in(self, loan_df):
        subset = apply_conditions(loan_df, [FilterCondition("Source", "IN", "Partner, Referral")])
        assert list(subset["Id"]) == ["R004", "R006", "R009"]

    def test_date_range(self):
        df = pd.DataFrame({"Id": ["a", "b", "c"], "CreatedDate": ["2026-02-10", "2025-12-31", "not a date"]})
        now = datetime(2026, 3, 15, tzinfo=timezone.utc)
        subset = apply_conditions(df, [FilterCondition("CreatedDate", "=", "THIS_QUARTER")], now=now)
        assert list(subset["Id"]) == ["a"]
        subset = apply_conditions(df, [FilterCondition("CreatedDate", "=", "LAST_QUARTER")], now=now)
        assert list(subset["Id"]) == ["b"]

    def test_unknown_field(self, loan_df):
        with pytest.raises(ConfigurationError):
            apply_conditions(loan_df, [FilterCondition("Region", "=", "North")])

    def test_non_numeric_comparison(self, loan_df):
        with pytest.raises(ConfigurationError):
            apply_conditions(loan_df, [FilterCondition("Amount", ">", "lots")])

    def test_bad_operator(self):
        with pytest.raises(ConfigurationError):
            FilterCondition("Amount", "~", 1)

    def test_dict_round_trip(self):
        condition = FilterCondition.from_dict({"field": "Source", "operator": "IN", "value": ["a", "b"]})
        assert condition.to_dict() == {"field": "Source", "operator": "IN", "value": ["a", "b"]}

