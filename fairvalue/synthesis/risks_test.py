from fairvalue.domain.types import ModelKey
from fairvalue.domain.types import ModelResult
from fairvalue.synthesis.blender import blend
from fairvalue.synthesis.classifier import BASE_WEIGHTS
from fairvalue.synthesis.risks import identify_risks
from fairvalue.synthesis.risks import NO_RISKS

MIXED = BASE_WEIGHTS['mixed']


class TestIdentifyRisks:
  """Tests for identify_risks function."""

  def test_no_risks(self, growth_results):
    """Two clean models produce the placeholder sentence only."""
    valuation = blend(growth_results, MIXED)
    assert identify_risks(growth_results, valuation) == [NO_RISKS]

  def test_dcf_caveats_and_single_model(self, results_factory):
    """High terminal share, default shares, negative FCF, one model."""
    results = results_factory(
        {ModelKey.DCF: 100.0},
        diags={
            ModelKey.DCF: {
                'terminal_ratio': 90.0,
                'shares_method': 'default (1e9 shares)',
                'fcf_base': -5.0,
            }
        })
    risks = identify_risks(results, blend(results, MIXED))
    assert risks == [
        '終端價值佔比偏高，估值對長期假設敏感',
        '流通股數使用預設值，公允價值可能有偏差',
        '自由現金流為負值，DCF 估值可靠性降低',
        '僅單一估值模型可用，綜合判斷參考性降低',
    ]

  def test_low_terminal_ratio(self, growth_results, results_factory):
    """Terminal share below 40% is flagged."""
    results = results_factory({
        ModelKey.DCF: 120.0,
        ModelKey.PER: 100.0
    },
                              diags={ModelKey.DCF: {
                                  'terminal_ratio': 30.0
                              }})
    risks = identify_risks(results, blend(results, MIXED))
    assert risks == ['終端價值佔比偏低，短期現金流主導']

  def test_dividend_payout_warning(self, results_factory):
    """Payout WARNING and a short dividend history."""
    results = results_factory(
        {
            ModelKey.DIVIDEND: 50.0,
            ModelKey.PBR: 60.0
        },
        diags={
            ModelKey.DIVIDEND: {
                'payout_grade': 'WARNING',
                'payout_ratio': 120.5,
                'consecutive_years': 2,
            }
        })
    risks = identify_risks(results, blend(results, MIXED))
    assert '配息率過高（120.5%），配息可能不可持續' in risks
    assert '連續配息年數不足 3 年，配息穩定性存疑' in risks

  def test_negative_eps_from_unavailable_per(self, growth_results):
    """Negative EPS is reported even though PER is unavailable."""
    results = dict(growth_results)
    results[ModelKey.PER] = ModelResult(ModelKey.PER,
                                        False,
                                        diag={
                                            'reason': 'negative basis',
                                            'ttm_eps': -3.1
                                        })
    risks = identify_risks(results, blend(results, MIXED))
    assert risks[0] == '近四季 EPS 為負，本益比模型不適用'

  def test_fallback(self, results_factory):
    """No usable model at all."""
    results = results_factory({})
    risks = identify_risks(results, blend(results, MIXED))
    assert risks == ['所有估值模型皆不可用，僅能參考 DCF 原始值']
