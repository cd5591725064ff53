import pytest

from flowtrace.config import ExplorerConfig
from flowtrace.data_source import CsvSource, DataFrameSource, load_or_unavailable
from flowtrace.errors import ConfigurationError, DataUnavailableError


@pytest.fixture
def config():
    return ExplorerConfig(path_fields=("Source", "Qualification", "Review", "Outcome"), metric_field="Amount")


class BrokenSource:
    def load_records(self, config):
        raise KeyError("connection dropped")


class TestDataFrameSource:
    def test_load(self, loan_df, config):
        result = DataFrameSource(loan_df).load_records(config)
        assert len(result.table) == 10
        assert result.steps == ("Source", "Qualification", "Review", "Outcome")
        assert result.config_hash == config.config_hash()
        assert not result.truncated

    def test_limit(self, loan_df, config):
        result = DataFrameSource(loan_df, limit=3).load_records(config)
        assert result.table.record_ids == ["R001", "R002", "R003"]
        assert result.truncated

    def test_filter_on_unknown_field(self, loan_df, config):
        config = config.with_changes(filters=[{"field": "Region", "operator": "=", "value": "x"}])
        with pytest.raises(ConfigurationError):
            DataFrameSource(loan_df).load_records(config)

    def test_wrong_object(self, loan_df, config):
        with pytest.raises(DataUnavailableError):
            DataFrameSource(loan_df, object_name="Loan").load_records(config.with_changes(object_name="Case"))


class TestCsvSource:
    def test_reads_file(self, tmp_path, loan_df, config):
        path = tmp_path / "loans.csv"
        loan_df.to_csv(path, index=False)
        source = CsvSource(path)
        assert source.object_name == "loans"
        assert len(source.load_records(config).table) == 10

    def test_semicolon_file(self, tmp_path, loan_df, config):
        path = tmp_path / "loans.csv"
        loan_df.to_csv(path, index=False, sep=";")
        result = CsvSource(path).load_records(config)
        assert result.table.record_ids[:2] == ["R001", "R002"]
        assert result.table.total_amount == 1_535_000.0

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_bytes(b"")
        with pytest.raises(DataUnavailableError):
            CsvSource(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(DataUnavailableError):
            CsvSource(tmp_path / "missing.csv")


def test_unexpected_failures_are_wrapped(config):
    with pytest.raises(DataUnavailableError):
        load_or_unavailable(BrokenSource(), config)
