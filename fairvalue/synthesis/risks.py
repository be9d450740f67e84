'''Human-readable caveats derived from model diagnostics.'''

from collections.abc import Mapping

from fairvalue.domain.types import ModelKey
from fairvalue.domain.types import ModelResult
from fairvalue.domain.types import WeightedValuation

NO_RISKS = '未發現重大風險提示'


def identify_risks(
    results: Mapping[ModelKey, ModelResult],
    valuation: WeightedValuation,
) -> list[str]:
  '''
  Collect caveats in a stable order: DCF, dividend, multiples, blend.

  Args:
    results: Model results by key
    valuation: The blended valuation

  Returns:
    Non-empty list of caveat sentences
  '''
  risks: list[str] = []

  dcf = results.get(ModelKey.DCF)
  if dcf is not None and dcf.available:
    terminal_ratio = dcf.diag.get('terminal_ratio')
    if isinstance(terminal_ratio, (int, float)):
      if terminal_ratio > 85:
        risks.append('終端價值佔比偏高，估值對長期假設敏感')
      elif terminal_ratio < 40:
        risks.append('終端價值佔比偏低，短期現金流主導')
    if 'default' in str(dcf.diag.get('shares_method', '')):
      risks.append('流通股數使用預設值，公允價值可能有偏差')
    fcf_base = dcf.diag.get('fcf_base')
    if isinstance(fcf_base, (int, float)) and fcf_base < 0:
      risks.append('自由現金流為負值，DCF 估值可靠性降低')

  dividend = results.get(ModelKey.DIVIDEND)
  if dividend is not None and dividend.available:
    if dividend.diag.get('payout_grade') == 'WARNING':
      ratio = dividend.diag.get('payout_ratio')
      risks.append(f'配息率過高（{ratio}%），配息可能不可持續')
    years = dividend.diag.get('consecutive_years')
    if isinstance(years, int) and years < 3:
      risks.append('連續配息年數不足 3 年，配息穩定性存疑')

  per = results.get(ModelKey.PER)
  eps = per.diag.get('ttm_eps') if per is not None else None
  if isinstance(eps, (int, float)) and eps < 0:
    risks.append('近四季 EPS 為負，本益比模型不適用')

  capex = results.get(ModelKey.CAPEX)
  if capex is not None and capex.available:
    if capex.diag.get('sector_confidence') == 'LOW':
      risks.append('資本支出強度低，CapEx 模型參考性有限')

  usable = [key for key, result in results.items() if result.usable]
  if valuation.fallback:
    risks.append('所有估值模型皆不可用，僅能參考 DCF 原始值')
  elif len(usable) == 1:
    risks.append('僅單一估值模型可用，綜合判斷參考性降低')

  if not risks:
    risks.append(NO_RISKS)
  return risks
