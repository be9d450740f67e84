import pandas as pd
import pytest

from fairvalue.models.statements import annual_dividends
from fairvalue.models.statements import annual_from_quarters
from fairvalue.models.statements import annual_from_ytd
from fairvalue.models.statements import average_price_by_year
from fairvalue.models.statements import cagr
from fairvalue.models.statements import estimate_shares
from fairvalue.models.statements import parse_roc_year
from fairvalue.models.statements import ttm_eps


def statements(rows):
  """Long-format frame from (date, type, value) tuples."""
  return pd.DataFrame(rows, columns=['date', 'type', 'value'])


QUARTER_ENDS = ['03-31', '06-30', '09-30', '12-31']


class TestAnnualFromQuarters:
  """Tests for annual_from_quarters function."""

  def test_sums_quarters(self):
    """Quarters are summed per year, newest year first."""
    frame = statements([(f'2023-{q}', 'EPS', 1.0) for q in QUARTER_ENDS] +
                       [(f'2024-{q}', 'EPS', 2.0) for q in QUARTER_ENDS[:2]])
    annual = annual_from_quarters(frame, 'EPS')
    assert list(annual['year']) == [2024, 2023]
    assert list(annual['value']) == [4.0, 4.0]
    assert list(annual['quarters']) == [2, 4]

  def test_missing_type(self):
    """An absent type gives an empty frame."""
    assert annual_from_quarters(statements([]), 'EPS').empty


class TestAnnualFromYTD:
  """Tests for annual_from_ytd function."""

  def test_december_row_is_full_year(self):
    """The latest row of a complete year is taken as is."""
    frame = statements([('2023-06-30', 'OCF', 40.0), ('2023-12-31', 'OCF',
                                                      100.0)])
    annual = annual_from_ytd(frame, 'OCF')
    assert annual.loc[0, 'value'] == 100.0
    assert bool(annual.loc[0, 'complete'])

  def test_partial_year_annualized(self):
    """Half a year of 60 annualizes to 120."""
    frame = statements([('2024-06-30', 'OCF', 60.0),
                        ('2023-12-31', 'OCF', 100.0)])
    annual = annual_from_ytd(frame, 'OCF')
    assert list(annual['year']) == [2024, 2023]
    assert annual.loc[0, 'value'] == pytest.approx(120.0)
    assert not bool(annual.loc[0, 'complete'])


class TestCagr:
  """Tests for cagr function."""

  def test_growth(self):
    """121 over 100 in two years is 10%."""
    assert cagr([121.0, 110.0, 100.0], 2) == pytest.approx(0.10)

  @pytest.mark.parametrize('values, years', [
      ([100.0], 1),
      ([100.0, -5.0], 1),
      ([0.0, 100.0], 1),
      ([110.0, 100.0], 0),
  ])
  def test_undefined(self, values, years):
    """Too few points, non-positive ends or no span give None."""
    assert cagr(values, years) is None


class TestPerShare:
  """Tests for ttm_eps and estimate_shares."""

  def test_ttm_eps(self):
    """The four latest quarters are summed."""
    frame = statements([(f'2023-{q}', 'EPS', 1.0) for q in QUARTER_ENDS] +
                       [(f'2024-{q}', 'EPS', 2.0) for q in QUARTER_ENDS[:2]])
    assert ttm_eps(frame) == pytest.approx(6.0)

  def test_ttm_eps_needs_four_quarters(self):
    """Three quarters are not a trailing year."""
    frame = statements([(f'2024-{q}', 'EPS', 2.0) for q in QUARTER_ENDS[:3]])
    assert ttm_eps(frame) is None

  def test_shares_from_income(self):
    """Net income 2.5e9 over EPS 2.5 is 1e9 shares."""
    frame = statements([('2024-12-31', 'EPS', 2.5),
                        ('2024-12-31', 'IncomeAfterTaxes', 2.5e9)])
    assert estimate_shares(frame) == (pytest.approx(1e9), 'net income / EPS')

  def test_shares_from_thousands(self):
    """Net income reported in thousands is scaled up."""
    frame = statements([('2024-12-31', 'EPS', 2.5),
                        ('2024-12-31', 'IncomeAfterTaxes', 2.5e6)])
    shares, method = estimate_shares(frame)
    assert shares == pytest.approx(1e9)
    assert method == 'net income (thousands) / EPS'

  def test_shares_unknown(self):
    """Zero EPS gives None."""
    frame = statements([('2024-12-31', 'EPS', 0.0),
                        ('2024-12-31', 'IncomeAfterTaxes', 1e9)])
    assert estimate_shares(frame) is None


class TestDividends:
  """Tests for dividend helpers."""

  @pytest.mark.parametrize('value, expected', [
      ('113年第2季', 2024),
      ('112年', 2023),
      ('2022', 2022),
      ('n/a', None),
      (None, None),
  ])
  def test_parse_roc_year(self, value, expected):
    """ROC calendar years are offset by 1911."""
    assert parse_roc_year(value) == expected

  def test_annual_dividends(self):
    """Cash and stock parts are summed per year."""
    dividends = pd.DataFrame({
        'year': ['112年', '112年', '113年'],
        'date': ['2023-07-01', '2023-12-01', '2024-07-01'],
        'CashEarningsDistribution': [2.0, 1.5, 3.0],
        'CashStaticDistribution': [0.0, 0.5, 0.0],
        'StockEarningsDistribution': [0.0, 0.0, 0.5],
    })
    annual = annual_dividends(dividends)
    assert list(annual.index) == [2023, 2024]
    assert list(annual['cash']) == [4.0, 3.0]
    assert list(annual['stock']) == [0.0, 0.5]

  def test_annual_dividends_by_date(self):
    """Without a year column the payment date decides."""
    dividends = pd.DataFrame({
        'date': ['2022-07-01', '2023-07-01'],
        'CashEarningsDistribution': [1.0, 2.0],
    })
    assert list(annual_dividends(dividends).index) == [2022, 2023]

  def test_average_price_by_year(self):
    """Closes are averaged per calendar year."""
    prices = pd.DataFrame({
        'date': ['2023-01-02', '2023-06-01', '2024-01-02'],
        'close': [90.0, 110.0, 120.0],
    })
    averages = average_price_by_year(prices)
    assert averages[2023] == pytest.approx(100.0)
    assert averages[2024] == pytest.approx(120.0)
