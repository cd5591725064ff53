import pandas as pd
import pytest

from flowtrace.graph_builder import build_graph
from flowtrace.record_loader import RecordTable

LOAN_STEPS = ["Source", "Qualification", "Review", "Outcome"]

LOAN_ROWS = [
    ("R001", "Acme Corp Loan", "Online", "Qualified", "Auto Review", "Approved", 50000),
    ("R002", "Beta Inc Loan", "Online", "Qualified", "Manual Review", "Approved", 120000),
    ("R003", "Gamma LLC Loan", "Branch", "Qualified", "Manual Review", "Declined", 200000),
    ("R004", "Delta Partners", "Partner", "Pre-Qualified", "Committee", "Approved", 500000),
    ("R005", "Epsilon Finance", "Online", "Fast Track", "Auto Review", "Approved", 30000),
    ("R006", "Zeta Holdings", "Referral", "Qualified", "Manual Review", "Approved", 175000),
    ("R007", "Eta Services", "Online", "Qualified", "Auto Review", "Declined", 45000),
    ("R008", "Theta Corp", "Branch", "Pre-Qualified", "Manual Review", "Approved", 90000),
    ("R009", "Iota Group", "Partner", "Qualified", "Committee", "Declined", 300000),
    ("R010", "Kappa Systems", "Online", "Fast Track", "Auto Review", "Approved", 25000),
]


@pytest.fixture
def funnel_rows():
    return [
        {"id": "A", "name": "Alpha", "Source": "Online", "Stage": "Won", "amount": 100},
        {"id": "B", "name": "Beta", "Source": "Online", "Stage": "Lost", "amount": 50},
        {"id": "C", "name": "Gamma", "Source": "Branch", "Stage": "Won", "amount": 200},
    ]


@pytest.fixture
def funnel_table(funnel_rows):
    return RecordTable.from_records(funnel_rows, ["Source", "Stage"])


@pytest.fixture
def funnel_graph(funnel_table):
    return build_graph(funnel_table)


@pytest.fixture
def loan_df():
    columns = ["Id", "Name", *LOAN_STEPS, "Amount"]
    return pd.DataFrame(LOAN_ROWS, columns=columns)


@pytest.fixture
def loan_table(loan_df):
    return RecordTable.from_dataframe(loan_df, LOAN_STEPS, record_id_col="Id", name_col="Name", amount_col="Amount")


@pytest.fixture
def loan_graph(loan_table):
    return build_graph(loan_table)
